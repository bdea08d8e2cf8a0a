"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class RuleNotFoundException(ResourceNotFoundException):
    """No exact or wildcard escalation rule matches a classification."""

    def __init__(
        self,
        category: Optional[str],
        sub_category: Optional[str],
        issue: Optional[str],
        priority: str
    ):
        super().__init__(
            "Escalation rule",
            details={
                "category": category,
                "sub_category": sub_category,
                "issue": issue,
                "priority": priority,
            }
        )


class InvalidTransitionException(DomainException):
    """Requested status change is not allowed from the current status."""

    def __init__(self, ticket_id: str, from_status: str, to_status: str, allowed: list):
        self.ticket_id = ticket_id
        self.from_status = from_status
        self.to_status = to_status
        allowed_text = ", ".join(allowed) if allowed else "none"
        super().__init__(
            f"Cannot transition ticket {ticket_id} from {from_status} to {to_status}. "
            f"Allowed: {allowed_text}",
            {"ticket_id": ticket_id, "from_status": from_status,
             "to_status": to_status, "allowed": list(allowed)}
        )


class InvalidEscalationException(DomainException):
    """Escalation request does not match the ticket's tier or lifecycle."""

    def __init__(self, ticket_id: str, message: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(
            f"Cannot escalate ticket {ticket_id}: {message}",
            details or {"ticket_id": ticket_id}
        )


class ConcurrentModificationException(ApplicationException):
    """Another writer changed the record between read and conditional update."""

    def __init__(self, resource_type: str, resource_id: str, expected_version: int):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"{resource_type} {resource_id} was modified concurrently; re-read and retry",
            {"resource_id": resource_id, "expected_version": expected_version}
        )
