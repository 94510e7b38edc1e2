"""
Helpdesk SLA Monitor
====================

Scans open high priority tickets on a fixed cadence, records breaches,
and notifies assignees once per breach.
"""

__version__ = "1.0.0"
