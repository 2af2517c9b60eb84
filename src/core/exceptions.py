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


class AuthorizationException(ApplicationException):
    """Actor lacks the role or hierarchy access for an action."""


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


class DocumentStorageException(ExternalServiceException):
    """Exception for attachment storage failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Document Storage", message, details)


class UnassignableTicketException(DomainException):
    """No supervisor could be resolved for the raising agent."""

    def __init__(self, agent_id: str, details: Optional[dict] = None):
        self.agent_id = agent_id
        super().__init__(
            "Could not determine an assignable supervisor for this agent",
            details or {"agent_id": agent_id}
        )


class StaleTicketStateException(DomainException):
    """A conditional ticket update found the ticket in a different state."""

    def __init__(self, ticket_id: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(
            f"Ticket {ticket_id} was changed by another operation, reload and retry",
            details or {"ticket_id": ticket_id}
        )


class TicketAlreadyResolvedException(DomainException):
    """The ticket is resolved and can no longer change status or assignment."""

    def __init__(self, ticket_id: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(
            f"Ticket {ticket_id} is already resolved",
            details or {"ticket_id": ticket_id}
        )


class DuplicateTicketNumberException(RepositoryException):
    """Another ticket already holds the allocated service request number."""

    def __init__(self, ticket_number: str):
        self.ticket_number = ticket_number
        super().__init__(
            f"Ticket number {ticket_number} is already taken",
            {"ticket_number": ticket_number}
        )
