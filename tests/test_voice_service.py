import pytest
import xml.etree.ElementTree as ET
from unittest.mock import Mock

from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from callflow.config.settings import Settings
from callflow.exceptions import FlowStoreError
from callflow.services.call_log_service import InMemoryCallLogStore
from callflow.services.flow_store import InMemoryFlowStore
from callflow.services.voice_service import create_app, merge_params

DIALED = "+15551234567"
AUTH_TOKEN = "test_auth_token"
PUBLIC_BASE_URL = "https://ivr.example.com"

NODES = [
    {"id": "n1", "type": "say", "config": {"text": "Hello & welcome"}, "next": ["n2"]},
    {"id": "n2", "type": "hangup"},
]


def parse(response):
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    assert response.headers["cache-control"] == "no-store"
    return ET.fromstring(response.content)


def make_settings(**overrides):
    values = {
        "SUPABASE_URL": "",
        "SUPABASE_SERVICE_KEY": "",
        "SUPABASE_ANON_KEY": "",
        "TWILIO_AUTH_TOKEN": "",
        "VALIDATE_TWILIO_SIGNATURE": False,
        "PUBLIC_BASE_URL": "",
    }
    values.update(overrides)
    return Settings(**values)


class TestVoiceService:
    """Integration tests for the voice webhook"""

    @pytest.fixture
    def flow_store(self):
        store = InMemoryFlowStore()
        store.add_flow(DIALED, NODES, flow_id="flow-1", user_id="user-1")
        return store

    @pytest.fixture
    def call_log_store(self):
        return InMemoryCallLogStore()

    @pytest.fixture
    def client(self, flow_store, call_log_store):
        app = create_app(settings=make_settings(), flow_store=flow_store, call_log_store=call_log_store)
        return TestClient(app)

    def test_entry_invocation(self, client):
        root = parse(client.post("/voice", data={"To": DIALED, "From": "+15559876543", "CallSid": "CA1"}))
        assert [child.tag for child in root] == ["Say", "Redirect"]
        assert root[0].text == "Hello & welcome"
        assert root[1].text.startswith("http://testserver/voice?node=n2")

    def test_escaped_markup(self, client):
        response = client.post("/voice", data={"To": DIALED})
        assert b"Hello &amp; welcome" in response.content

    def test_follow_up_invocation(self, client):
        response = client.post("/voice?node=n2&To=%2B15551234567", data={"CallSid": "CA1"})
        assert response.text == '<?xml version="1.0" encoding="UTF-8"?><Response><Hangup/></Response>'

    def test_get_with_query_params(self, client):
        root = parse(client.get("/voice", params={"To": DIALED, "node": "n2"}))
        assert [child.tag for child in root] == ["Hangup"]

    def test_form_wins_over_query(self, client):
        root = parse(client.post("/voice?node=n1", data={"To": DIALED, "node": "n2"}))
        assert [child.tag for child in root] == ["Hangup"]

    def test_public_base_url_in_callbacks(self, flow_store):
        settings = make_settings(PUBLIC_BASE_URL=PUBLIC_BASE_URL)
        client = TestClient(create_app(settings=settings, flow_store=flow_store, call_log_store=InMemoryCallLogStore()))
        root = parse(client.post("/voice", data={"To": DIALED}))
        assert root.find("Redirect").text.startswith(f"{PUBLIC_BASE_URL}/voice?node=n2")

    def test_unconfigured_number(self, client):
        root = parse(client.post("/voice", data={"To": "+15550000000"}))
        assert root[0].text == "This number is not configured."
        assert root[1].tag == "Hangup"

    def test_ambiguous_number(self, flow_store, client):
        flow_store.add_flow("5551234567", NODES, flow_id="flow-2")
        root = parse(client.post("/voice", data={"To": DIALED}))
        assert root[0].text == "This number has more than one active call flow."

    def test_store_failure(self, call_log_store):
        store = Mock()
        store.find_active_flows.side_effect = FlowStoreError("connection refused")
        client = TestClient(create_app(settings=make_settings(), flow_store=store, call_log_store=call_log_store))
        root = parse(client.post("/voice", data={"To": DIALED}))
        assert root[0].text == "An internal error occurred. Please try again later."
        assert root[1].tag == "Hangup"

    def test_malformed_body_still_answers_with_twiml(self, client):
        response = client.post(
            "/voice?To=%2B15551234567",
            content=b"garbage",
            headers={"content-type": "multipart/form-data"},
        )
        root = parse(response)
        assert [child.tag for child in root] == ["Say", "Redirect"]

    def test_malformed_body_without_query(self, client):
        response = client.post("/voice", content=b"garbage", headers={"content-type": "multipart/form-data"})
        root = parse(response)
        assert root[0].text == "This number is not configured."

    def test_punctuated_stored_number(self, call_log_store):
        store = InMemoryFlowStore()
        store.add_flow("+1 (555) 123-4567", NODES, flow_id="flow-1")
        client = TestClient(create_app(settings=make_settings(), flow_store=store, call_log_store=call_log_store))
        root = parse(client.post("/voice", data={"To": DIALED}))
        assert root[0].text == "Hello & welcome"

    def test_entry_invocation_logs_call(self, client, call_log_store):
        client.post("/voice", data={"To": DIALED, "From": "+15559876543", "CallSid": "CA1"})
        client.post("/voice?node=n2", data={"To": DIALED, "CallSid": "CA1"})

        assert len(call_log_store.rows) == 1
        row = call_log_store.rows[0]
        assert row["twilio_call_sid"] == "CA1"
        assert row["call_flow_id"] == "flow-1"
        assert row["user_id"] == "user-1"
        assert row["from_number"] == "+15559876543"

    def test_gather_callback_does_not_log_call(self, flow_store, call_log_store):
        flow_store.add_flow("+15550001111", [{"id": "g", "type": "gather", "config": {}}], flow_id="flow-g")
        client = TestClient(create_app(settings=make_settings(), flow_store=flow_store, call_log_store=call_log_store))
        client.post("/voice?gathered=1&attempt=0", data={"To": "+15550001111", "CallSid": "CA2"})
        assert call_log_store.rows == []

    def test_call_log_failure_does_not_change_answer(self, flow_store):
        call_log_store = Mock()
        call_log_store.log_call_start.side_effect = RuntimeError("insert failed")
        client = TestClient(create_app(settings=make_settings(), flow_store=flow_store, call_log_store=call_log_store))
        root = parse(client.post("/voice", data={"To": DIALED, "CallSid": "CA1"}))
        assert root[0].text == "Hello & welcome"

    def test_status_callback(self, client, call_log_store):
        client.post("/voice", data={"To": DIALED, "CallSid": "CA1"})
        response = client.post("/voice/status", data={"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "31"})

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "updated": True}
        assert call_log_store.rows[0]["status"] == "completed"
        assert call_log_store.rows[0]["duration"] == 31
        assert "ended_at" in call_log_store.rows[0]

    def test_status_callback_unknown_call(self, client):
        response = client.post("/voice/status", data={"CallSid": "CA404", "CallStatus": "completed"})
        assert response.json() == {"status": "ok", "updated": False}

    def test_status_callback_missing_fields(self, client):
        assert client.post("/voice/status", data={}).json() == {"status": "ignored"}

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["signature_validation"] is False
        assert body["call_logging"] is True


class TestSignatureValidation:
    """Twilio request signature checks"""

    @pytest.fixture
    def client(self):
        store = InMemoryFlowStore()
        store.add_flow(DIALED, NODES, flow_id="flow-1")
        settings = make_settings(
            TWILIO_AUTH_TOKEN=AUTH_TOKEN,
            VALIDATE_TWILIO_SIGNATURE=True,
            PUBLIC_BASE_URL=PUBLIC_BASE_URL,
        )
        return TestClient(create_app(settings=settings, flow_store=store, call_log_store=InMemoryCallLogStore()))

    def test_valid_signature(self, client):
        params = {"To": DIALED, "CallSid": "CA1"}
        signature = RequestValidator(AUTH_TOKEN).compute_signature(f"{PUBLIC_BASE_URL}/voice", params)
        root = parse(client.post("/voice", data=params, headers={"X-Twilio-Signature": signature}))
        assert root[0].text == "Hello & welcome"

    def test_valid_signature_with_query(self, client):
        params = {"CallSid": "CA1"}
        url = f"{PUBLIC_BASE_URL}/voice?node=n2&To=%2B15551234567"
        signature = RequestValidator(AUTH_TOKEN).compute_signature(url, params)
        response = client.post("/voice?node=n2&To=%2B15551234567", data=params, headers={"X-Twilio-Signature": signature})
        assert [child.tag for child in parse(response)] == ["Hangup"]

    def test_invalid_signature(self, client):
        response = client.post("/voice", data={"To": DIALED}, headers={"X-Twilio-Signature": "bogus"})
        assert response.status_code == 403

    def test_missing_signature(self, client):
        assert client.post("/voice", data={"To": DIALED}).status_code == 403

    def test_status_callback_requires_signature(self, client):
        response = client.post("/voice/status", data={"CallSid": "CA1", "CallStatus": "completed"})
        assert response.status_code == 403


class TestMergeParams:
    """Unit tests for form/query merging"""

    def test_form_wins(self):
        assert merge_params({"node": "a"}, {"node": "b"}) == {"node": "a"}

    def test_blank_form_falls_back_to_query(self):
        assert merge_params({"To": ""}, {"To": DIALED}) == {"To": DIALED}

    def test_union(self):
        assert merge_params({"Digits": "1"}, {"node": "g"}) == {"Digits": "1", "node": "g"}
