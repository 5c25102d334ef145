"""
Service layer for the call flow webhook.

This module contains:
- Flow stores (Supabase and in-memory)
- Flow resolution by dialed number
- Call log persistence
- The FastAPI voice service (import callflow.services.voice_service directly)
"""

from . import call_log_service
from . import flow_resolver
from . import flow_store

__all__ = [
    'call_log_service',
    'flow_resolver',
    'flow_store'
]
