"""
SLA Interfaces Layer
=====================

HTTP routes for the SLA monitor.
"""

from helpdesk.sla.interfaces.controllers import router, get_sla_monitor

__all__ = ["router", "get_sla_monitor"]
