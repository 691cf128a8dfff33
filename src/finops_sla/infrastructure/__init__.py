"""Shared infrastructure: database engine and session management."""
