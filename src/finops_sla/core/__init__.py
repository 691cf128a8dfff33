"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from finops_sla.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    StoreUnavailableException,
    ValidationException,
    ResourceNotFoundException,
    InvalidStateException,
    AlreadyAcknowledgedException,
    SyncFailedException,
    SyncTimeoutException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "StoreUnavailableException",
    "ValidationException",
    "ResourceNotFoundException",
    "InvalidStateException",
    "AlreadyAcknowledgedException",
    "SyncFailedException",
    "SyncTimeoutException",
]
