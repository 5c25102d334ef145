"""
TwiML rendering for call flow responses.

Elements are built with the twilio helper library; serialization is done here
so every text node and attribute value gets full entity escaping (``&``,
``<``, ``>``, ``"`` and ``'``) and control characters that are not legal in
XML 1.0 are dropped. One renderer call always yields one ``<Response>``
document.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlencode
from xml.etree.ElementTree import Element
from xml.sax.saxutils import escape

from twilio.twiml.voice_response import VoiceResponse

from ..models import Continuation

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def escape_xml(value: str) -> str:
    """Escape text for use in TwiML element content or attribute values"""
    return escape(_INVALID_XML_CHARS.sub("", value), _QUOTE_ENTITIES)


def serialize_element(element: Element) -> str:
    """Serialize an element tree with strict escaping"""
    attrs = "".join(f' {name}="{escape_xml(str(value))}"' for name, value in element.attrib.items())
    text = escape_xml(element.text) if element.text else ""
    children = "".join(serialize_element(child) for child in element)
    tail = escape_xml(element.tail) if element.tail else ""

    if not text and not children:
        return f"<{element.tag}{attrs}/>{tail}"
    return f"<{element.tag}{attrs}>{text}{children}</{element.tag}>{tail}"


class TwimlRenderer:
    """Maps interpreter decisions to TwiML verbs"""

    def __init__(self, action_url: str, voice: Optional[str] = "alice", gather_input: str = "dtmf speech"):
        """
        Initialize the renderer

        Args:
            action_url: Absolute URL of the voice webhook, without query string
            voice: Twilio <Say> voice, or None for the account default
            gather_input: Value of the <Gather input> attribute
        """
        self.action_url = action_url
        self.voice = voice
        self.gather_input = gather_input

    def new_response(self) -> VoiceResponse:
        return VoiceResponse()

    def callback_url(self, continuation: Continuation) -> str:
        """Webhook URL carrying the call state for the next callback"""
        separator = "&" if "?" in self.action_url else "?"
        return f"{self.action_url}{separator}{urlencode(continuation.query_params())}"

    def to_xml(self, response: VoiceResponse) -> str:
        return XML_DECLARATION + serialize_element(response.xml())

    # ===== PRIMITIVES =====

    def say(self, parent, message: Optional[str], audio_url: Optional[str] = None) -> bool:
        """
        Speak a message, preferring recorded audio over text-to-speech.

        Returns:
            False when there was neither audio nor text to render
        """
        if audio_url and audio_url.strip():
            parent.play(audio_url.strip())
            return True
        if message and message.strip():
            if self.voice:
                parent.say(message, voice=self.voice)
            else:
                parent.say(message)
            return True
        return False

    def play(self, response: VoiceResponse, url: str) -> None:
        response.play(url)

    def gather(self, response: VoiceResponse, continuation: Continuation, prompt: Optional[str],
               audio_url: Optional[str] = None, timeout: int = 5) -> None:
        """Single-digit gather whose action reports back to the same node"""
        gather = response.gather(
            action=self.callback_url(continuation),
            method="POST",
            input=self.gather_input,
            num_digits=1,
            timeout=timeout,
            action_on_empty_result=True,
        )
        self.say(gather, prompt, audio_url)

    def redirect(self, response: VoiceResponse, continuation: Continuation) -> None:
        response.redirect(self.callback_url(continuation), method="POST")

    def dial(self, response: VoiceResponse, numbers: Iterable[str], timeout: int,
             continuation: Continuation) -> None:
        dial = response.dial(action=self.callback_url(continuation), method="POST", timeout=timeout)
        for number in numbers:
            dial.number(number)

    def pause(self, response: VoiceResponse, length: int) -> None:
        response.pause(length=length)

    def sms(self, response: VoiceResponse, message: str, to: str) -> None:
        response.sms(message, to=to)

    def hangup(self, response: VoiceResponse) -> None:
        response.hangup()

    def terminal(self, message: Optional[str] = None, audio_url: Optional[str] = None) -> str:
        """Complete document: optional message, then hang up"""
        response = self.new_response()
        self.say(response, message, audio_url)
        self.hangup(response)
        return self.to_xml(response)
