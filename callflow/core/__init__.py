"""
Core call flow logic.

This module contains:
- The call flow interpreter (one handler per node type)
- TwiML rendering with strict escaping
- Phone number normalization
"""

from . import interpreter
from . import phone_numbers
from . import twiml_renderer

__all__ = [
    'interpreter',
    'phone_numbers',
    'twiml_renderer'
]
