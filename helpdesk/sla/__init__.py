"""
SLA Module
==========

SLA breach monitor for high priority tickets.

Layers:
- domain: deadline policy, ticket snapshot, state machine
- application: the monitor service and the interfaces it depends on
- infrastructure: SQLAlchemy persistence, policy loading, scheduler
- interfaces: FastAPI routes
"""
