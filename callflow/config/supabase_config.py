"""
Supabase configuration for the flow store and call logs
Shares the Supabase project used by the flow editor web app
"""

import logging
from typing import Dict, Any, Optional

from supabase import create_client, Client

from ..exceptions import FlowStoreError
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Tables and columns read or written by the service
SCHEMA_INFO: Dict[str, Any] = {
    "tables": {
        "call_flows": "Call flow definitions (flow_json node list) keyed by phone number",
        "call_logs": "Inbound call records written by the voice webhook",
    },
    "columns": {
        "call_flows": ["id", "name", "phone_number", "flow_json", "status", "user_id"],
        "call_logs": [
            "id", "call_flow_id", "user_id", "twilio_call_sid", "from_number", "to_number",
            "direction", "status", "duration", "recording_url", "started_at", "ended_at",
        ],
    },
}


def get_supabase_config(settings: Optional[Settings] = None) -> Dict[str, str]:
    """Get Supabase configuration from settings"""
    settings = settings or default_settings
    return {
        "url": settings.SUPABASE_URL,
        "key": settings.supabase_key,
    }


def create_supabase_client(settings: Optional[Settings] = None) -> Client:
    """Create a Supabase client, raising FlowStoreError when unconfigured"""
    config = get_supabase_config(settings)

    if not config["url"]:
        raise FlowStoreError("SUPABASE_URL environment variable is required")
    if not config["key"]:
        raise FlowStoreError("SUPABASE_SERVICE_KEY or SUPABASE_ANON_KEY environment variable is required")

    try:
        client = create_client(config["url"], config["key"])
    except Exception as e:
        raise FlowStoreError(f"Failed to create Supabase client: {e}") from e

    logger.info(f"✅ Supabase client initialized: {config['url']}")
    return client
