"""
Service Desk Interfaces Layer
=============================

Interface adapters (controllers) for the service desk module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.servicedesk.interfaces.controllers import notifications_router, tickets_router

__all__ = ["tickets_router", "notifications_router"]
