"""
Configuration and environment setup.

This module contains:
- Service settings loaded from the environment / .env file
- Supabase connection configuration
"""

from .settings import Settings, settings

__all__ = [
    'Settings',
    'settings'
]
