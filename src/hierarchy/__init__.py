"""
Hierarchy Module
================

Bounded Context for the supervision hierarchy of the back office.

Responsibilities:
- Role model and the capability table (who may create/read/update/reassign/resolve)
- Resolve an agent's direct supervisor and regional manager
- Compute which agents' tickets an actor may see
"""

__version__ = "1.0.0"
