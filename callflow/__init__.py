"""
Call Flow Package

Stateless call-flow interpreter for inbound telephony webhooks:
- Flow lookup by dialed phone number
- Node graph interpretation (say, gather, forward, pause, play, hangup, sms)
- TwiML rendering with strict escaping
- Call log persistence
"""

__version__ = "1.0.0"
__author__ = "Call Flow Team"

# Service modules (FastAPI app, Supabase client) are imported on demand
