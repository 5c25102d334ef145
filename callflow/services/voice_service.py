"""
Call Flow Voice Service
- Twilio voice webhook that executes the call flow attached to the dialed number
- Call status callback for call logs
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from twilio.request_validator import RequestValidator

from ..config.settings import Settings, settings as default_settings
from ..core.interpreter import CallFlowInterpreter
from ..core.twiml_renderer import TwimlRenderer
from ..exceptions import CallFlowError
from ..logging_conf import configure_logging
from ..models import CallContext, FlowDefinition, RenderedResponse
from .call_log_service import CallLogData, CallLogStore, SupabaseCallLogStore
from .flow_resolver import FlowResolver
from .flow_store import FlowStore, SupabaseFlowStore

logger = logging.getLogger(__name__)


def merge_params(form: Mapping[str, Any], query: Mapping[str, Any]) -> Dict[str, str]:
    """Form fields win over query parameters; empty form values fall back to the query"""
    params: Dict[str, str] = {}
    for key in set(form.keys()) | set(query.keys()):
        form_value = form.get(key)
        value = form_value if form_value not in (None, "") else query.get(key)
        if value is not None:
            params[key] = str(value)
    return params


def twiml_response(xml: str) -> Response:
    return Response(content=xml, media_type="text/xml", headers={"Cache-Control": "no-store"})


def _public_url(request: Request, settings: Settings) -> str:
    """URL Twilio used for this request (PUBLIC_BASE_URL wins behind proxies)"""
    if not settings.PUBLIC_BASE_URL:
        return str(request.url)
    url = settings.PUBLIC_BASE_URL.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


def _action_url(request: Request, settings: Settings) -> str:
    base = settings.PUBLIC_BASE_URL or str(request.base_url)
    return base.rstrip("/") + settings.VOICE_ENDPOINT


def _validate_twilio_signature(request: Request, form: Mapping[str, Any], settings: Settings) -> None:
    if not settings.signature_validation_enabled:
        return
    signature = request.headers.get("X-Twilio-Signature", "")
    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
    params = {k: v for k, v in form.items()}
    if not signature or not validator.validate(_public_url(request, settings), params, signature):
        logger.warning(f"🚫 Rejected request with invalid Twilio signature: {request.url.path}")
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


def create_app(settings: Optional[Settings] = None, flow_store: Optional[FlowStore] = None,
               call_log_store: Optional[CallLogStore] = None) -> FastAPI:
    """
    Build the voice service

    Args:
        settings: Service settings (module settings when omitted)
        flow_store: Flow backend (Supabase when omitted)
        call_log_store: Call log backend (Supabase when omitted)
    """
    settings = settings or default_settings

    app = FastAPI(title="Call Flow Voice Service")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    flow_store = flow_store or SupabaseFlowStore(settings=settings)
    if call_log_store is None and settings.CALL_LOGGING_ENABLED:
        call_log_store = SupabaseCallLogStore(settings=settings)

    app.state.settings = settings
    app.state.resolver = FlowResolver(flow_store, default_country_code=settings.DEFAULT_COUNTRY_CODE)
    app.state.call_log_store = call_log_store

    if not settings.signature_validation_enabled:
        logger.warning("TWILIO_AUTH_TOKEN not set or validation disabled; Twilio signatures will not be checked")

    async def _record_call_start(context: CallContext, flow: FlowDefinition) -> None:
        if not (call_log_store and context.call_sid):
            return
        try:
            call = CallLogData(
                twilio_call_sid=context.call_sid,
                to_number=context.to_number,
                from_number=context.from_number,
                call_flow_id=flow.id,
                user_id=flow.user_id,
            )
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, call_log_store.log_call_start, call)
        except Exception as e:
            logger.error(f"Failed to create call record: {e}")

    async def _handle_call(context: CallContext, interpreter: CallFlowInterpreter) -> RenderedResponse:
        try:
            loop = asyncio.get_event_loop()
            flow = await loop.run_in_executor(None, app.state.resolver.resolve, context.to_number)
        except CallFlowError as e:
            logger.warning(f"⚠️ Flow lookup failed for {context.to_number}: {e.message}")
            return interpreter.render_error(e)

        # Entry invocation: no node id and no gather result yet
        if context.node_id is None and not context.gathered:
            await _record_call_start(context, flow)

        return interpreter.interpret(flow, context)

    @app.api_route(settings.VOICE_ENDPOINT, methods=["GET", "POST"])
    async def voice_webhook(request: Request):
        """Execute one step of the call flow and return TwiML"""
        form = {}
        if request.method == "POST":
            try:
                form = await request.form()
            except Exception as e:
                # Unreadable body: answer from the query parameters alone
                logger.warning(f"⚠️ Could not parse voice webhook body: {e}")
        _validate_twilio_signature(request, form, settings)

        renderer = TwimlRenderer(
            _action_url(request, settings),
            voice=settings.TTS_VOICE or None,
            gather_input=settings.GATHER_INPUT,
        )
        interpreter = CallFlowInterpreter(renderer)

        try:
            context = CallContext.from_params(merge_params(form, request.query_params))
            rendered = await _handle_call(context, interpreter)
        except Exception as e:
            logger.exception(f"❌ Fatal error handling voice webhook: {e}")
            return twiml_response(interpreter.render_error(e).twiml)

        logger.info(
            f"📞 {context.call_sid or '-'} to {context.to_number}: node={rendered.node_id} -> {rendered.outcome.value}",
            extra={
                "evt": "voice_step",
                "call_sid": context.call_sid,
                "node_id": rendered.node_id,
                "outcome": rendered.outcome.value,
                "attempt": context.attempt,
            },
        )
        return twiml_response(rendered.twiml)

    @app.post(settings.STATUS_ENDPOINT)
    async def call_status_callback(request: Request):
        """Update the call log from Twilio's status callback"""
        form = await request.form()
        _validate_twilio_signature(request, form, settings)

        call_sid = form.get("CallSid")
        status = form.get("CallStatus")
        if not (call_sid and status):
            return {"status": "ignored"}

        logger.info(f"📊 Call {call_sid} status: {status}")
        updated = False
        if call_log_store:
            try:
                loop = asyncio.get_event_loop()
                updated = await loop.run_in_executor(
                    None,
                    lambda: call_log_store.update_call_status(
                        call_sid, status, form.get("CallDuration"), form.get("RecordingUrl")
                    ),
                )
            except Exception as e:
                logger.error(f"Failed to update call record {call_sid}: {e}")

        return {"status": "ok", "updated": bool(updated)}

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "supabase_configured": bool(settings.SUPABASE_URL and settings.supabase_key),
            "signature_validation": settings.signature_validation_enabled,
            "call_logging": call_log_store is not None,
        }

    return app


configure_logging(default_settings.LOG_LEVEL, default_settings.LOG_FORMAT)
app = create_app()
