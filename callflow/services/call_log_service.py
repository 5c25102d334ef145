"""
Call log persistence

One ``call_logs`` row per inbound call: inserted when the voice webhook first
answers, updated from Twilio's status callbacks. Failures here are logged and
never change the TwiML returned to the caller.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from ..config.settings import Settings, settings as default_settings
from ..config.supabase_config import create_supabase_client

logger = logging.getLogger(__name__)

# Twilio CallStatus values after which the call is over
FINAL_CALL_STATUSES = {"completed", "busy", "failed", "no-answer", "canceled"}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CallLogData:
    """Structured call data for the call_logs table"""
    twilio_call_sid: str
    to_number: str
    from_number: Optional[str] = None
    call_flow_id: Optional[str] = None
    user_id: Optional[str] = None
    direction: str = "inbound"
    status: str = "in-progress"
    started_at: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["started_at"] = self.started_at or _utc_now()
        return row


def build_status_update(status: str, duration: Optional[str] = None,
                        recording_url: Optional[str] = None) -> Dict[str, Any]:
    """Column updates for a Twilio status callback"""
    update: Dict[str, Any] = {"status": status}
    if duration:
        try:
            update["duration"] = int(duration)
        except ValueError:
            logger.warning(f"Ignoring non-numeric CallDuration: {duration}")
    if recording_url:
        update["recording_url"] = recording_url
    if status in FINAL_CALL_STATUSES:
        update["ended_at"] = _utc_now()
    return update


class CallLogStore(ABC):
    """Abstract base class for call log backends"""

    @abstractmethod
    def log_call_start(self, call: CallLogData) -> bool:
        pass

    @abstractmethod
    def update_call_status(self, call_sid: str, status: str, duration: Optional[str] = None,
                           recording_url: Optional[str] = None) -> bool:
        pass


class SupabaseCallLogStore(CallLogStore):
    """Supabase backed call log store"""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.table = self.settings.CALL_LOGS_TABLE
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_supabase_client(self.settings)
        return self._client

    def log_call_start(self, call: CallLogData) -> bool:
        try:
            self.client.table(self.table).insert(call.to_row()).execute()
            logger.info(f"✅ Call logged: {call.twilio_call_sid}")
            return True
        except Exception as e:
            logger.error(f"❌ Error logging call {call.twilio_call_sid}: {e}")
            return False

    def update_call_status(self, call_sid: str, status: str, duration: Optional[str] = None,
                           recording_url: Optional[str] = None) -> bool:
        try:
            update = build_status_update(status, duration, recording_url)
            self.client.table(self.table).update(update).eq("twilio_call_sid", call_sid).execute()
            logger.info(f"✅ Call {call_sid} status updated: {status}")
            return True
        except Exception as e:
            logger.error(f"❌ Error updating call {call_sid}: {e}")
            return False


class InMemoryCallLogStore(CallLogStore):
    """Call log store kept in process memory, for local runs and tests"""

    def __init__(self):
        self.rows: List[Dict[str, Any]] = []

    def log_call_start(self, call: CallLogData) -> bool:
        self.rows.append(call.to_row())
        return True

    def update_call_status(self, call_sid: str, status: str, duration: Optional[str] = None,
                           recording_url: Optional[str] = None) -> bool:
        rows = [row for row in self.rows if row.get("twilio_call_sid") == call_sid]
        if not rows:
            logger.warning(f"⚠️ No call log for {call_sid}")
            return False
        update = build_status_update(status, duration, recording_url)
        for row in rows:
            row.update(update)
        return True
