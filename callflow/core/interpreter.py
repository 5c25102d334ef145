"""
Call flow interpreter.

Walks a user-authored flow one step per webhook callback. The interpreter
keeps nothing between calls: the node to execute, the gather attempt counter
and the dial leg all arrive in the ``CallContext`` rebuilt from the callback
URL the previous response handed to Twilio. Given the same flow and context
it always produces the same TwiML.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

from ..exceptions import AmbiguousFlowError, FlowNotFoundError
from ..models import (
    CallContext,
    Continuation,
    FlowDefinition,
    FlowNode,
    ForwardConfig,
    GatherConfig,
    GatherOption,
    HangupConfig,
    MultiForwardConfig,
    NodeConfig,
    NodeType,
    Outcome,
    PauseConfig,
    PlayConfig,
    RenderedResponse,
    RingStrategy,
    SayConfig,
    SmsConfig,
)
from .twiml_renderer import TwimlRenderer

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "This number is not configured."
AMBIGUOUS_FLOW_MESSAGE = "This number has more than one active call flow."
EMPTY_FLOW_MESSAGE = "Call flow is empty."
NODE_NOT_FOUND_MESSAGE = "Node not found."
INVALID_NODE_TYPE_MESSAGE = "Invalid node type."
INTERNAL_ERROR_MESSAGE = "An internal error occurred. Please try again later."

DEFAULT_PROMPT = "Please make a selection."
DEFAULT_RETRY_MESSAGE = "Please try again."
INVALID_OPTION_PREFIX = "Invalid option."
DEFAULT_GOODBYE_MESSAGE = "Maximum attempts reached. Goodbye!"
DEFAULT_OPTION_RESPONSE = "Thank you."

# DialCallStatus values meaning the forwarded leg was picked up
ANSWERED_DIAL_STATUSES = {"completed", "answered"}

SPOKEN_DIGITS = {
    "zero": "0", "oh": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

_WORDS = re.compile(r"[a-z0-9]+")


def match_option(options: Sequence[GatherOption], digits: Optional[str],
                 speech: Optional[str] = None) -> Optional[GatherOption]:
    """
    Find the menu option selected by the caller.

    DTMF digits are matched against each option's digit. Speech matches an
    option when one of its keywords appears in the transcript, or when the
    caller says the option's number ("two", "2").
    """
    if digits:
        pressed = digits.strip()
        for option in options:
            if option.digit and option.digit == pressed:
                return option

    if speech:
        lowered = speech.lower()
        for option in options:
            if any(keyword.lower() in lowered for keyword in option.speech_keywords):
                return option

        for word in _WORDS.findall(lowered):
            spoken = SPOKEN_DIGITS.get(word) or (word if len(word) == 1 and word.isdigit() else None)
            if not spoken:
                continue
            for option in options:
                if option.digit == spoken:
                    return option

    return None


def dial_plan(numbers: Sequence[str], strategy: RingStrategy) -> List[List[str]]:
    """
    Split forwarding targets into dial legs.

    simultaneous: one leg ringing every number
    sequential:   one leg per number, in order
    priority:     the primary number alone, then all the others together
    """
    numbers = list(numbers)
    if not numbers:
        return []
    if strategy == RingStrategy.SEQUENTIAL:
        return [[number] for number in numbers]
    if strategy == RingStrategy.PRIORITY:
        legs = [numbers[:1]]
        if len(numbers) > 1:
            legs.append(numbers[1:])
        return legs
    return [numbers]


class CallFlowInterpreter:
    """Executes one flow node per callback and renders the TwiML answer"""

    def __init__(self, renderer: TwimlRenderer):
        self.renderer = renderer
        self._handlers: Dict[NodeType, Callable[[FlowNode, NodeConfig, CallContext], RenderedResponse]] = {
            NodeType.SAY: self._handle_say,
            NodeType.GATHER: self._handle_gather,
            NodeType.FORWARD: self._handle_forward,
            NodeType.MULTI_FORWARD: self._handle_multi_forward,
            NodeType.PAUSE: self._handle_pause,
            NodeType.PLAY: self._handle_play,
            NodeType.HANGUP: self._handle_hangup,
            NodeType.SMS: self._handle_sms,
        }

    def interpret(self, flow: FlowDefinition, context: CallContext) -> RenderedResponse:
        """Render the response for the node named in the context (entry node if none)"""
        if flow.is_empty:
            logger.warning(f"⚠️ Call flow {flow.id} for {context.to_number} has no nodes")
            return self.terminal(Outcome.EMPTY_FLOW, EMPTY_FLOW_MESSAGE)

        node = flow.get_node(context.node_id) if context.node_id else flow.entry_node
        if node is None:
            logger.warning(f"⚠️ Node {context.node_id} not found in flow {flow.id}")
            return self.terminal(Outcome.NODE_NOT_FOUND, NODE_NOT_FOUND_MESSAGE, node_id=context.node_id)

        node_type = node.node_type
        handler = self._handlers.get(node_type) if node_type else None
        if handler is None:
            logger.warning(f"⚠️ Node {node.id} has unsupported type '{node.type}'")
            return self.terminal(Outcome.INVALID_NODE_TYPE, INVALID_NODE_TYPE_MESSAGE, node_id=node.id)

        try:
            return handler(node, node.parse_config(), context)
        except Exception as e:
            logger.exception(f"❌ Failed to execute node {node.id} ({node.type}): {e}")
            return self.terminal(Outcome.ERROR, INTERNAL_ERROR_MESSAGE, node_id=node.id)

    def terminal(self, outcome: Outcome, message: Optional[str] = None,
                 node_id: Optional[str] = None, audio_url: Optional[str] = None) -> RenderedResponse:
        """Speak a message and hang up"""
        return RenderedResponse(
            twiml=self.renderer.terminal(message, audio_url),
            outcome=outcome,
            node_id=node_id,
        )

    def render_error(self, error: Exception) -> RenderedResponse:
        """Audible answer for failures that happen before a flow is available"""
        if isinstance(error, FlowNotFoundError):
            return self.terminal(Outcome.NOT_CONFIGURED, NOT_CONFIGURED_MESSAGE)
        if isinstance(error, AmbiguousFlowError):
            return self.terminal(Outcome.AMBIGUOUS_FLOW, AMBIGUOUS_FLOW_MESSAGE)
        return self.terminal(Outcome.ERROR, INTERNAL_ERROR_MESSAGE)

    # ===== HELPERS =====

    def _continue(self, response, node: FlowNode, context: CallContext) -> RenderedResponse:
        """Redirect along the node's first edge, or hang up when it has none"""
        next_id = node.next_node_id
        if next_id:
            continuation = Continuation(node_id=next_id, to_number=context.to_number)
            self.renderer.redirect(response, continuation)
            return RenderedResponse(
                twiml=self.renderer.to_xml(response),
                outcome=Outcome.REDIRECT,
                node_id=node.id,
                continuation=continuation,
            )

        self.renderer.hangup(response)
        return RenderedResponse(twiml=self.renderer.to_xml(response), outcome=Outcome.HANGUP, node_id=node.id)

    def _redirect_to(self, node: FlowNode, target_id: str, context: CallContext) -> RenderedResponse:
        response = self.renderer.new_response()
        continuation = Continuation(node_id=target_id, to_number=context.to_number)
        self.renderer.redirect(response, continuation)
        return RenderedResponse(
            twiml=self.renderer.to_xml(response),
            outcome=Outcome.REDIRECT,
            node_id=node.id,
            continuation=continuation,
        )

    # ===== NODE HANDLERS =====

    def _handle_say(self, node: FlowNode, config: SayConfig, context: CallContext) -> RenderedResponse:
        response = self.renderer.new_response()
        if not self.renderer.say(response, config.text, config.audio_url):
            logger.info(f"Say node {node.id} has no text or audio, skipping")
        return self._continue(response, node, context)

    def _handle_play(self, node: FlowNode, config: PlayConfig, context: CallContext) -> RenderedResponse:
        response = self.renderer.new_response()
        if config.url:
            self.renderer.play(response, config.url)
        else:
            logger.info(f"Play node {node.id} has no audio URL, skipping")
        return self._continue(response, node, context)

    def _handle_pause(self, node: FlowNode, config: PauseConfig, context: CallContext) -> RenderedResponse:
        response = self.renderer.new_response()
        self.renderer.pause(response, config.duration)
        return self._continue(response, node, context)

    def _handle_hangup(self, node: FlowNode, config: HangupConfig, context: CallContext) -> RenderedResponse:
        return self.terminal(Outcome.HANGUP, config.message, node_id=node.id, audio_url=config.audio_url)

    def _handle_sms(self, node: FlowNode, config: SmsConfig, context: CallContext) -> RenderedResponse:
        response = self.renderer.new_response()
        recipient = config.to or context.from_number
        if config.message and recipient:
            self.renderer.sms(response, config.message, recipient)
        else:
            logger.warning(f"⚠️ SMS node {node.id} skipped: message or recipient missing")
        return self._continue(response, node, context)

    def _handle_gather(self, node: FlowNode, config: GatherConfig, context: CallContext) -> RenderedResponse:
        # First visit: no gather result yet
        if not (context.gathered or context.has_input):
            return self._prompt(node, config, context, attempt=context.attempt, retry=False)

        selected = match_option(config.options, context.digits, context.speech_result)
        if selected is not None:
            logger.info(f"🔢 Gather {node.id}: option {selected.digit} selected")
            return self._select_option(node, selected, context)

        if context.attempt >= config.max_retries:
            logger.info(f"Gather {node.id}: max retries ({config.max_retries}) reached, ending call")
            return self.terminal(
                Outcome.HANGUP,
                config.goodbye_message or DEFAULT_GOODBYE_MESSAGE,
                node_id=node.id,
                audio_url=config.goodbye_audio_url,
            )

        logger.info(f"Gather {node.id}: no match for input (attempt {context.attempt})")
        return self._prompt(node, config, context, attempt=context.attempt + 1, retry=True)

    def _prompt(self, node: FlowNode, config: GatherConfig, context: CallContext,
                attempt: int, retry: bool) -> RenderedResponse:
        if retry:
            message = f"{INVALID_OPTION_PREFIX} {config.retry_message or config.prompt or DEFAULT_RETRY_MESSAGE}"
            audio_url = config.retry_audio_url or config.prompt_audio_url
        else:
            message = config.prompt or DEFAULT_PROMPT
            audio_url = config.prompt_audio_url

        continuation = Continuation(
            node_id=node.id,
            to_number=context.to_number,
            attempt=attempt,
            gathered=True,
        )
        response = self.renderer.new_response()
        self.renderer.gather(response, continuation, message, audio_url, timeout=config.timeout)
        return RenderedResponse(
            twiml=self.renderer.to_xml(response),
            outcome=Outcome.GATHER,
            node_id=node.id,
            continuation=continuation,
            details={"attempt": attempt, "retry": retry},
        )

    def _select_option(self, node: FlowNode, option: GatherOption, context: CallContext) -> RenderedResponse:
        # A connected block wins over the option's inline response text
        if option.block_id:
            return self._redirect_to(node, option.block_id, context)

        response = self.renderer.new_response()
        if option.action == "say" and option.text:
            self.renderer.say(response, option.text, option.audio_url)
            return self._continue(response, node, context)

        self.renderer.say(response, option.text or DEFAULT_OPTION_RESPONSE, option.audio_url)
        self.renderer.hangup(response)
        return RenderedResponse(twiml=self.renderer.to_xml(response), outcome=Outcome.HANGUP, node_id=node.id)

    def _handle_forward(self, node: FlowNode, config: ForwardConfig, context: CallContext) -> RenderedResponse:
        legs = [[config.number]] if config.number else []
        return self._dial(node, legs, config.timeout, context)

    def _handle_multi_forward(self, node: FlowNode, config: MultiForwardConfig,
                              context: CallContext) -> RenderedResponse:
        legs = dial_plan(config.numbers, config.forward_strategy)
        return self._dial(node, legs, config.ring_timeout, context)

    def _dial(self, node: FlowNode, legs: List[List[str]], timeout: int, context: CallContext) -> RenderedResponse:
        """
        Dial the leg named by the context.

        Each <Dial> reports back with leg + 1. An answered leg ends the call;
        otherwise the next leg rings, and when none are left the flow
        continues along the node's edge.
        """
        response = self.renderer.new_response()

        if context.leg > 0 and (context.dial_status or "").lower() in ANSWERED_DIAL_STATUSES:
            self.renderer.hangup(response)
            return RenderedResponse(twiml=self.renderer.to_xml(response), outcome=Outcome.HANGUP, node_id=node.id)

        if context.leg < len(legs):
            continuation = Continuation(node_id=node.id, to_number=context.to_number, leg=context.leg + 1)
            self.renderer.dial(response, legs[context.leg], timeout, continuation)
            return RenderedResponse(
                twiml=self.renderer.to_xml(response),
                outcome=Outcome.DIAL,
                node_id=node.id,
                continuation=continuation,
                details={"leg": context.leg, "numbers": list(legs[context.leg])},
            )

        if not legs:
            logger.warning(f"⚠️ Forward node {node.id} has no numbers configured")
        else:
            logger.info(f"Forward node {node.id}: no answer on {len(legs)} leg(s) ({context.dial_status})")
        return self._continue(response, node, context)
