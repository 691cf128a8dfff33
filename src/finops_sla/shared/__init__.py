"""
Shared Kernel Module
====================

Generic infrastructure used by the SLA monitoring module: structured
logging and the HTTP middleware and exception handlers.

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
