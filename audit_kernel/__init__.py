"""
audit_kernel -- Shared infrastructure for the Drive audit system.

Provides structured JSON logging, the typed exception hierarchy, the
injectable clock, and the SQLAlchemy declarative base / engine helpers.

Architecture:
    audit_kernel is the lowest layer.  It MUST NOT import from
    audit_batch, audit_config, or scripts.
"""
