"""
Call flow data models

Flow definitions are authored in the flow editor and stored as a JSON node
list on the ``call_flows`` row. Node configs are kept as raw dicts on the node
and validated per type when the node is executed, so an invalid config on one
node never prevents the rest of the flow from running.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, field_validator

MAX_FORWARD_NUMBERS = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_GATHER_TIMEOUT = 5
DEFAULT_FORWARD_TIMEOUT = 30
DEFAULT_RING_TIMEOUT = 20
DEFAULT_PAUSE_SECONDS = 1


class NodeType(str, Enum):
    SAY = "say"
    GATHER = "gather"
    FORWARD = "forward"
    MULTI_FORWARD = "multi_forward"
    PAUSE = "pause"
    PLAY = "play"
    HANGUP = "hangup"
    SMS = "sms"

    @classmethod
    def parse(cls, value: Any) -> Optional["NodeType"]:
        """Map a stored type tag to a NodeType, or None for unknown tags"""
        # Older flows were saved with "menu" for gather nodes
        if value == "menu":
            return cls.GATHER
        try:
            return cls(value)
        except ValueError:
            return None


class RingStrategy(str, Enum):
    SIMULTANEOUS = "simultaneous"
    SEQUENTIAL = "sequential"
    PRIORITY = "priority"


class Outcome(str, Enum):
    REDIRECT = "redirect"
    GATHER = "gather"
    DIAL = "dial"
    HANGUP = "hangup"
    NOT_CONFIGURED = "not_configured"
    AMBIGUOUS_FLOW = "ambiguous_flow"
    EMPTY_FLOW = "empty_flow"
    NODE_NOT_FOUND = "node_not_found"
    INVALID_NODE_TYPE = "invalid_node_type"
    ERROR = "error"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _none_to_empty(value: Any) -> Any:
    return "" if value is None else value


def _positive_or(default: int) -> Callable[[Any], int]:
    # The flow editor saves cleared number inputs as 0 or "" and may send "7.5"
    def validator(value: Any) -> int:
        try:
            number = int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            return default
        return number if number > 0 else default
    return validator


def _non_negative_int(value: Any) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
Text = Annotated[str, BeforeValidator(_none_to_empty)]
NonNegativeInt = Annotated[int, BeforeValidator(_non_negative_int)]
MaxRetries = Annotated[int, BeforeValidator(_positive_or(DEFAULT_MAX_RETRIES))]
GatherTimeout = Annotated[int, BeforeValidator(_positive_or(DEFAULT_GATHER_TIMEOUT))]
ForwardTimeout = Annotated[int, BeforeValidator(_positive_or(DEFAULT_FORWARD_TIMEOUT))]
RingTimeout = Annotated[int, BeforeValidator(_positive_or(DEFAULT_RING_TIMEOUT))]
PauseSeconds = Annotated[int, BeforeValidator(_positive_or(DEFAULT_PAUSE_SECONDS))]


# ===== NODE CONFIGS =====

class NodeConfig(BaseModel):
    """Base for per-type node configuration"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SayConfig(NodeConfig):
    text: Text = ""
    audio_url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("audioUrl", "audio_url", "recordingUrl", "recording_url"),
    )


class PlayConfig(NodeConfig):
    url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("url", "audioUrl", "audio_url"),
    )


class GatherOption(NodeConfig):
    digit: str = ""
    text: Text = ""
    block_id: OptionalText = Field(default=None, validation_alias=AliasChoices("blockId", "block_id"))
    action: OptionalText = None
    audio_url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("audioUrl", "audio_url", "recordingUrl", "recording_url"),
    )
    speech_keywords: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("speechKeywords", "speech_keywords"),
    )

    @field_validator("digit", mode="before")
    @classmethod
    def coerce_digit(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("speech_keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, value: Any) -> List[str]:
        if not value:
            return []
        return [str(kw).strip() for kw in value if kw is not None and str(kw).strip()]


class GatherConfig(NodeConfig):
    prompt: OptionalText = None
    prompt_audio_url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("promptAudioUrl", "prompt_audio_url", "audioUrl", "audio_url"),
    )
    retry_message: OptionalText = Field(default=None, validation_alias=AliasChoices("retryMessage", "retry_message"))
    retry_audio_url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("retryAudioUrl", "retry_audio_url", "retryMessageAudioUrl"),
    )
    goodbye_message: OptionalText = Field(
        default=None, validation_alias=AliasChoices("goodbyeMessage", "goodbye_message")
    )
    goodbye_audio_url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("goodbyeAudioUrl", "goodbye_audio_url", "messageAudioUrl"),
    )
    max_retries: MaxRetries = Field(
        default=DEFAULT_MAX_RETRIES, validation_alias=AliasChoices("maxRetries", "max_retries")
    )
    timeout: GatherTimeout = DEFAULT_GATHER_TIMEOUT
    options: List[GatherOption] = Field(default_factory=list)

    @field_validator("options", mode="before")
    @classmethod
    def coerce_options(cls, value: Any) -> Any:
        return value or []


class ForwardConfig(NodeConfig):
    number: OptionalText = None
    timeout: ForwardTimeout = DEFAULT_FORWARD_TIMEOUT


class MultiForwardConfig(NodeConfig):
    numbers: List[str] = Field(default_factory=list)
    forward_strategy: RingStrategy = Field(
        default=RingStrategy.SIMULTANEOUS,
        validation_alias=AliasChoices("forwardStrategy", "forward_strategy"),
    )
    ring_timeout: RingTimeout = Field(
        default=DEFAULT_RING_TIMEOUT, validation_alias=AliasChoices("ringTimeout", "ring_timeout")
    )

    @field_validator("numbers", mode="before")
    @classmethod
    def clean_numbers(cls, value: Any) -> List[str]:
        if not value:
            return []
        numbers = [str(n).strip() for n in value if n is not None and str(n).strip()]
        return numbers[:MAX_FORWARD_NUMBERS]

    @field_validator("forward_strategy", mode="before")
    @classmethod
    def default_strategy(cls, value: Any) -> Any:
        return value or RingStrategy.SIMULTANEOUS


class PauseConfig(NodeConfig):
    duration: PauseSeconds = DEFAULT_PAUSE_SECONDS


class HangupConfig(NodeConfig):
    message: Text = ""
    audio_url: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices(
            "audioUrl", "audio_url", "recordingUrl", "recording_url", "messageAudioUrl"
        ),
    )


class SmsConfig(NodeConfig):
    message: OptionalText = Field(default=None, validation_alias=AliasChoices("message", "text", "body"))
    to: OptionalText = None


NODE_CONFIG_MODELS: Dict[NodeType, Type[NodeConfig]] = {
    NodeType.SAY: SayConfig,
    NodeType.GATHER: GatherConfig,
    NodeType.FORWARD: ForwardConfig,
    NodeType.MULTI_FORWARD: MultiForwardConfig,
    NodeType.PAUSE: PauseConfig,
    NodeType.PLAY: PlayConfig,
    NodeType.HANGUP: HangupConfig,
    NodeType.SMS: SmsConfig,
}


# ===== FLOW =====

class FlowNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    next: List[str] = Field(default_factory=list)

    @field_validator("id", "type", mode="before")
    @classmethod
    def coerce_str(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("config", mode="before")
    @classmethod
    def coerce_config(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("next", mode="before")
    @classmethod
    def coerce_next(cls, value: Any) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(node_id) for node_id in value if node_id not in (None, "")]

    @property
    def node_type(self) -> Optional[NodeType]:
        return NodeType.parse(self.type)

    @property
    def next_node_id(self) -> Optional[str]:
        return self.next[0] if self.next else None

    def parse_config(self) -> NodeConfig:
        """Validate the raw config against this node type's config model"""
        node_type = self.node_type
        if node_type is None:
            raise ValueError(f"Unknown node type: {self.type}")
        return NODE_CONFIG_MODELS[node_type].model_validate(self.config)


class FlowDefinition(BaseModel):
    """A call flow: an ordered node list attached to one phone number"""

    id: Optional[str] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[str] = None
    nodes: List[FlowNode] = Field(default_factory=list)

    _index: Dict[str, FlowNode] = PrivateAttr(default_factory=dict)

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("nodes")
    @classmethod
    def unique_ids(cls, nodes: List[FlowNode]) -> List[FlowNode]:
        seen = set()
        for node in nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return nodes

    def model_post_init(self, __context: Any) -> None:
        self._index = {node.id: node for node in self.nodes}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FlowDefinition":
        """Build a flow from a call_flows row; a non-list flow_json is an empty flow"""
        flow_json = row.get("flow_json")
        if isinstance(flow_json, str):
            try:
                flow_json = json.loads(flow_json)
            except ValueError:
                flow_json = None
        nodes = flow_json if isinstance(flow_json, list) else []
        return cls(
            id=row.get("id"),
            name=row.get("name"),
            phone_number=row.get("phone_number"),
            user_id=row.get("user_id"),
            status=row.get("status"),
            nodes=nodes,
        )

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    @property
    def entry_node(self) -> Optional[FlowNode]:
        return self.nodes[0] if self.nodes else None

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return self._index.get(node_id)


# ===== CALL CONTEXT =====

class CallContext(BaseModel):
    """Per-request call state rebuilt from the webhook's form and query fields"""

    to_number: Text = ""
    from_number: OptionalText = None
    call_sid: OptionalText = None
    node_id: OptionalText = None
    digits: OptionalText = None
    speech_result: OptionalText = None
    attempt: NonNegativeInt = 0
    gathered: bool = False
    leg: NonNegativeInt = 0
    dial_status: OptionalText = None

    @field_validator("gathered", mode="before")
    @classmethod
    def coerce_flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes")

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "CallContext":
        """Build a context from Twilio webhook parameter names"""
        return cls(
            to_number=params.get("To") or "",
            from_number=params.get("From"),
            call_sid=params.get("CallSid"),
            node_id=params.get("node"),
            digits=params.get("Digits"),
            speech_result=params.get("SpeechResult"),
            attempt=params.get("attempt") or 0,
            gathered=params.get("gathered") or False,
            leg=params.get("leg") or 0,
            dial_status=params.get("DialCallStatus"),
        )

    @property
    def has_input(self) -> bool:
        return self.digits is not None or self.speech_result is not None


# ===== INTERPRETER OUTPUT =====

@dataclass(frozen=True)
class Continuation:
    """State the provider hands back on the next callback"""
    node_id: str
    to_number: str
    attempt: Optional[int] = None
    leg: Optional[int] = None
    gathered: bool = False

    def query_params(self) -> List[Tuple[str, str]]:
        params = [("node", self.node_id), ("To", self.to_number)]
        if self.attempt is not None:
            params.append(("attempt", str(self.attempt)))
        if self.leg is not None:
            params.append(("leg", str(self.leg)))
        if self.gathered:
            params.append(("gathered", "1"))
        return params


@dataclass
class RenderedResponse:
    """TwiML document plus what the interpreter decided"""
    twiml: str
    outcome: Outcome
    node_id: Optional[str] = None
    continuation: Optional[Continuation] = None
    details: Dict[str, Any] = field(default_factory=dict)
