"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database connection management
- Session lifecycle for requests and background jobs
"""
