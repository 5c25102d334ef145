"""
Flow store backends

Read access to the ``call_flows`` table. The interpreter never talks to the
store directly; the voice service hands a store to the FlowResolver.

Stored phone numbers are free-form (the flow editor has saved them with
spaces, dashes and parentheses), so stores only prefilter rows by digits.
The resolver makes the exact E.164 comparison.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from supabase import Client

from ..config.settings import Settings, settings as default_settings
from ..config.supabase_config import SCHEMA_INFO, create_supabase_client
from ..core.phone_numbers import digits_only
from ..exceptions import FlowStoreError

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"
FLOW_COLUMNS = ", ".join(SCHEMA_INFO["columns"]["call_flows"])


def digit_pattern(digits: str) -> str:
    """ILIKE pattern matching the digits in order with any punctuation between them"""
    return "%" + "%".join(digits) + "%"


class FlowStore(ABC):
    """Abstract base class for flow storage backends"""

    @abstractmethod
    def find_active_flows(self, digits: str) -> List[Dict[str, Any]]:
        """Return active call_flows rows whose stored phone_number contains these digits"""
        pass


class SupabaseFlowStore(FlowStore):
    """Supabase backed flow store"""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.table = self.settings.CALL_FLOWS_TABLE
        self._client = client

    @property
    def client(self) -> Client:
        # Created on first use so the app can start without Supabase configured
        if self._client is None:
            self._client = create_supabase_client(self.settings)
        return self._client

    def find_active_flows(self, digits: str) -> List[Dict[str, Any]]:
        if not digits:
            return []

        try:
            result = (
                self.client.table(self.table)
                .select(FLOW_COLUMNS)
                .ilike("phone_number", digit_pattern(digits))
                .eq("status", ACTIVE_STATUS)
                .execute()
            )
        except FlowStoreError:
            raise
        except Exception as e:
            logger.error(f"❌ Error fetching flows for {digits}: {e}")
            raise FlowStoreError(f"Failed to query {self.table}: {e}") from e

        return result.data if result.data else []


class InMemoryFlowStore(FlowStore):
    """Flow store kept in process memory, for local runs and tests"""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows: List[Dict[str, Any]] = list(rows or [])

    def add_flow(self, phone_number: str, nodes: Any, flow_id: Optional[str] = None,
                 status: str = ACTIVE_STATUS, **fields: Any) -> Dict[str, Any]:
        """Store a flow row and return it"""
        row = {
            "id": flow_id or str(uuid.uuid4()),
            "name": fields.pop("name", f"Flow for {phone_number}"),
            "phone_number": phone_number,
            "flow_json": nodes,
            "status": status,
            "user_id": fields.pop("user_id", None),
            **fields,
        }
        self.rows.append(row)
        return row

    def find_active_flows(self, digits: str) -> List[Dict[str, Any]]:
        if not digits:
            return []
        return [
            dict(row) for row in self.rows
            if row.get("status") == ACTIVE_STATUS and digits in digits_only(row.get("phone_number"))
        ]
