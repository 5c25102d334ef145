"""
Flow resolver: dialed number -> exactly one active call flow
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from ..core.phone_numbers import normalize_e164, search_digits
from ..exceptions import AmbiguousFlowError, FlowNotFoundError, InvalidFlowError
from ..models import FlowDefinition
from .flow_store import FlowStore

logger = logging.getLogger(__name__)


class FlowResolver:
    """Looks up the call flow attached to a dialed number"""

    def __init__(self, store: FlowStore, default_country_code: str = "1"):
        self.store = store
        self.default_country_code = default_country_code

    def resolve(self, dialed_number: str) -> FlowDefinition:
        """
        Find the active flow for a dialed number.

        The store prefilters rows by digits; each stored number is then
        compared in E.164 form, so "+15551234567", "1 (555) 123-4567" and
        "555-123-4567" all match the same flow, while a number that merely
        contains the dialed digits does not.

        Raises:
            FlowNotFoundError: No active flow is attached to the number
            AmbiguousFlowError: More than one active flow is attached to the number
            InvalidFlowError: The matching flow's node list is malformed
            FlowStoreError: The store could not be queried
        """
        dialed_e164 = normalize_e164(dialed_number, self.default_country_code)
        if not dialed_e164:
            raise FlowNotFoundError("No dialed number on request", phone_number=dialed_number)

        rows = self.store.find_active_flows(search_digits(dialed_number, self.default_country_code))

        matches: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            if normalize_e164(row.get("phone_number"), self.default_country_code) != dialed_e164:
                continue
            key = str(row.get("id") or row.get("phone_number"))
            matches.setdefault(key, row)

        if not matches:
            logger.info(f"No flow found for {dialed_number}")
            raise FlowNotFoundError(f"No active call flow for {dialed_e164}", phone_number=dialed_number)

        if len(matches) > 1:
            flow_ids = sorted(matches)
            logger.error(f"❌ {len(flow_ids)} active flows match {dialed_e164}: {flow_ids}")
            raise AmbiguousFlowError(
                f"Multiple active call flows for {dialed_e164}",
                phone_number=dialed_number,
                flow_ids=flow_ids,
            )

        row = next(iter(matches.values()))
        try:
            flow = FlowDefinition.from_row(row)
        except ValidationError as e:
            raise InvalidFlowError(f"Call flow {row.get('id')} is malformed: {e}", phone_number=dialed_number) from e

        logger.info(f"✅ Found flow {flow.id} for {dialed_number} ({len(flow.nodes)} nodes)")
        return flow
