"""
Escalation Interfaces Layer
============================

Interface adapters (controllers) for the helpdesk escalation module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from facility_helpdesk.escalation.interfaces.controllers import (
    escalation_router,
    helpdesk_router,
)

__all__ = ["escalation_router", "helpdesk_router"]
