"""
Gemini Conversational Gateway

Wraps the google-genai SDK for the anemia advice assistant. The gateway is
stateless between calls: every send builds a fresh chat from the stored
message history, re-issues the persona instruction and collects the
streamed reply into a single string.
"""

import time
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, List, Optional

from google import genai
from google.genai import types

from config import (
    GEMINI_API_KEY,
    GEMINI_MODEL,
    GEMINI_TIMEOUT_SECONDS,
    GEMINI_MAX_OUTPUT_TOKENS,
)
from shared import SYSTEM_INSTRUCTION, SENDER_AI, image_mime_type
from structured_logging import get_logger, log_inference_call

logger = get_logger(__name__)

TEMPERATURE = 0.7
TOP_P = 0.95
TOP_K = 64

SCAN_CONTEXT_PROMPT = (
    "This user has had an eye conjunctiva scan for anemia detection. "
    "The scan result was {status} for anemia. "
    "Please provide initial advice about anemia based on this result."
)


@dataclass
class ChatHandle:
    """Initialized conversation settings for one chat session."""
    model: str
    config: types.GenerateContentConfig


def to_gateway_history(messages: Iterable) -> List[types.Content]:
    """Map stored chat rows to Gemini contents ("ai" becomes "model")."""
    history = []
    for message in messages:
        role = "model" if message.sender == SENDER_AI else "user"
        history.append(types.Content(role=role, parts=[types.Part(text=message.message)]))
    return history


async def collect_stream(stream: AsyncIterator) -> str:
    """
    Concatenate streamed text fragments in arrival order.

    Fragments without text (e.g. safety-only chunks) contribute nothing. If
    the stream fails part way the error propagates and no partial text is
    returned.
    """
    fragments = []
    async for chunk in stream:
        text = getattr(chunk, "text", None)
        if text:
            fragments.append(text)
    return "".join(fragments)


class GeminiService:
    """Conversational gateway backed by Gemini."""

    def __init__(
        self,
        client: Optional[genai.Client] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ):
        self._client = client
        self.api_key = api_key or GEMINI_API_KEY
        self.model = model or GEMINI_MODEL
        self.timeout_seconds = timeout_seconds or GEMINI_TIMEOUT_SECONDS
        self.max_output_tokens = max_output_tokens or GEMINI_MAX_OUTPUT_TOKENS

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("GEMINI_API_KEY is not set")
            timeout_ms = int(self.timeout_seconds * 1000)
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=timeout_ms)
            )
            logger.info(
                "Gemini client initialized",
                extra={"model": self.model, "timeout_s": self.timeout_seconds}
            )
        return self._client

    def initialize_chat(self) -> ChatHandle:
        """Build the persona and generation settings used for every send."""
        return ChatHandle(
            model=self.model,
            config=types.GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                temperature=TEMPERATURE,
                top_p=TOP_P,
                top_k=TOP_K,
                max_output_tokens=self.max_output_tokens,
            ),
        )

    async def _send(self, handle: ChatHandle, message, history: List[types.Content], purpose: str) -> str:
        start = time.time()
        try:
            chat = self._get_client().aio.chats.create(
                model=handle.model,
                config=handle.config,
                history=history,
            )
            reply = await collect_stream(await chat.send_message_stream(message))
        except Exception as e:
            log_inference_call(
                service="chat",
                duration_ms=(time.time() - start) * 1000,
                success=False,
                error=str(e),
                purpose=purpose,
            )
            raise

        log_inference_call(
            service="chat",
            duration_ms=(time.time() - start) * 1000,
            success=True,
            purpose=purpose,
            history_length=len(history),
            reply_length=len(reply),
        )
        return reply

    async def send_message(self, handle: ChatHandle, message: str, history: Iterable = ()) -> str:
        """Send one user message on top of the stored history. May return ""."""
        return await self._send(handle, message, to_gateway_history(history), "message")

    async def provide_scan_context(self, handle: ChatHandle, scan, image: Optional[bytes] = None) -> str:
        """
        Prime a conversation with a scan verdict, attaching the eye photo
        as inline data when it could be read.
        """
        status = "positive" if scan.scan_result else "negative"
        parts = []
        if image:
            parts.append(types.Part.from_bytes(data=image, mime_type=image_mime_type(scan.photo_url)))
        parts.append(types.Part(text=SCAN_CONTEXT_PROMPT.format(status=status)))
        return await self._send(handle, parts, [], "scan_context")


# Singleton instance
_gemini_service: Optional[GeminiService] = None


def get_gemini_service() -> GeminiService:
    """Get or create the Gemini service instance"""
    global _gemini_service
    if _gemini_service is None:
        _gemini_service = GeminiService()
    return _gemini_service
