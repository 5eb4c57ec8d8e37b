"""
Audit Package
=============

Offline replay of recorded sessions through the anti-cheat engine.
"""

from reflex_guard.audit.run_audit import audit_session, load_session_log

__all__ = ["audit_session", "load_session_log"]
