"""
Shared Kernel Module
====================

Shared infrastructure used across bounded contexts (SLA monitoring and
notifications).

DO NOT add business logic from SLA or notifications to shared kernel.
"""

__version__ = "1.0.0"
