"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from src.core.clock import Clock, utc_now
from src.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    AuthorizationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    DocumentStorageException,
    UnassignableTicketException,
    StaleTicketStateException,
    TicketAlreadyResolvedException,
    DuplicateTicketNumberException,
)

__all__ = [
    "Clock",
    "utc_now",
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "AuthorizationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "DocumentStorageException",
    "UnassignableTicketException",
    "StaleTicketStateException",
    "TicketAlreadyResolvedException",
    "DuplicateTicketNumberException",
]
