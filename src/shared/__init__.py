"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Hierarchy and Service Desk).

Architecture Pattern: Modular Monolith
- Each module (hierarchy, servicedesk) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add ticket or hierarchy business logic to the shared kernel.
"""

__version__ = "1.0.0"
