"""
Shared Kernel Module
====================

Generic infrastructure used by the escalation bounded context: structured
logging and HTTP middleware.

DO NOT add escalation business logic to the shared kernel.
"""

__version__ = "1.0.0"
