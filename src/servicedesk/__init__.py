"""
Service Desk Module
===================

Service requests raised by agents against their supervisors, with
working-hours SLA deadlines and automatic escalation to the regional
manager and then to an admin.

Layers:
- domain: tickets, notifications, working-hours clock, SLA calculator
- application: lifecycle, escalation and notification services
- infrastructure: SQLAlchemy repositories, policy file, scheduler, storage
- interfaces: FastAPI routers
"""
