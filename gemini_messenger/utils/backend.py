"""
Thin adapter over the google-genai async client.

The rest of the package only sees BackendEvent / SpeechResult and BackendError,
never raw SDK responses or SDK exceptions.
"""

import base64
from typing import Any, AsyncIterator, List, Optional, Union

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..models import GroundingSource, ToolCallRequest
from .errors import BackendError, ConfigurationError, ErrorKind, classify_api_error
from .grounding import extract_grounding_records


class BackendEvent(BaseModel):
    """One streamed response chunk, reduced to what the orchestration needs."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    grounding: List[GroundingSource] = Field(default_factory=list)
    has_grounding_metadata: bool = False
    # Raw function-call parts, resent verbatim when resuming (they carry thought signatures)
    function_call_parts: List[Any] = Field(default_factory=list)


class SpeechResult(BaseModel):
    audio_base64: str
    mime_type: Optional[str] = None


class GeminiBackend:
    def __init__(self, api_key: Optional[str], client: Optional[genai.Client] = None):
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("No Gemini API key configured (set GEMINI_API_KEY or pass --gemini-api-key).")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate_stream(
        self,
        model: str,
        system_instruction: str,
        contents: List[types.Content],
        tools: Optional[List[types.Tool]] = None,
    ) -> AsyncIterator[BackendEvent]:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=tools or None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        logger.debug(f"generate_content_stream: model={model}, {len(contents)} content item(s), {len(tools or [])} tool(s)")
        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=model,
                contents=contents,
                config=config,
            )
            async for response in stream:
                yield response_to_event(response, model)
        except genai_errors.APIError as e:
            raise classify_api_error(e, model) from e
        except httpx.HTTPError as e:
            raise transport_error(e, model) from e

    async def synthesize_speech(self, model: str, text: str, voice: str) -> SpeechResult:
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice),
                )
            ),
        )
        logger.debug(f"TTS request: model={model}, voice={voice}, {len(text)} chars")
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=text,
                config=config,
            )
        except genai_errors.APIError as e:
            raise classify_api_error(e, model) from e
        except httpx.HTTPError as e:
            raise transport_error(e, model) from e

        inline = _first_inline_data(response)
        if inline is None or not inline.data:
            raise BackendError(ErrorKind.FATAL, "Speech model returned no audio", model=model)
        return SpeechResult(audio_base64=_as_base64(inline.data), mime_type=inline.mime_type)


def transport_error(exc: httpx.HTTPError, model: Optional[str] = None) -> BackendError:
    """Network failures (timeouts, refused connections) become FATAL errors."""
    return BackendError(ErrorKind.FATAL, f"Could not reach the Gemini API: {exc!r}", model=model)


def response_to_event(response: Any, model: Optional[str] = None) -> BackendEvent:
    """Converts one GenerateContentResponse chunk into a BackendEvent."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
    if block_reason:
        raise BackendError(ErrorKind.FATAL, f"Request blocked by the backend: {block_reason}", model=model)

    event = BackendEvent()
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        text_parts = []
        for part in parts:
            function_call = getattr(part, "function_call", None)
            if function_call is not None:
                event.tool_calls.append(
                    ToolCallRequest(
                        name=function_call.name or "",
                        arguments=dict(function_call.args or {}),
                        id=getattr(function_call, "id", None),
                    )
                )
                event.function_call_parts.append(part)
                continue
            # Thought summaries are not part of the answer
            if getattr(part, "thought", None):
                continue
            if getattr(part, "text", None):
                text_parts.append(part.text)
        event.text = "".join(text_parts)
        event.has_grounding_metadata = getattr(candidates[0], "grounding_metadata", None) is not None

    if event.has_grounding_metadata:
        event.grounding = extract_grounding_records(response)
    return event


def _first_inline_data(response: Any) -> Optional[types.Blob]:
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return inline
    return None


def _as_base64(data: Union[bytes, str]) -> str:
    # The SDK hands back raw bytes; some proxies pass the base64 text through
    if isinstance(data, str):
        return data
    return base64.b64encode(data).decode("ascii")


__all__ = [
    "BackendEvent",
    "SpeechResult",
    "GeminiBackend",
    "response_to_event",
    "transport_error",
]
