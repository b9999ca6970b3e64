import asyncio
import json
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

from google.genai import types
from loguru import logger

from ..models import StreamChunk, ToolCallRequest, ToolCallResult
from .backend import BackendEvent, GeminiBackend
from .config import AppSettings, settings
from .grounding import GroundingCollector
from .tools import ToolRegistry


class TurnState(str, Enum):
    GENERATING = "generating"
    TOOL_CALL_DETECTED = "tool_call_detected"
    DISPATCHING = "dispatching"
    RESUMING = "resuming"
    DONE = "done"


class ToolResultCache:
    """
    Tool results of one user turn, keyed by tool name and arguments.

    Shared by every candidate model of the turn, so a fallback model that
    asks for the same lookup gets the earlier answer instead of a second
    call. Failed results are not kept.
    """

    def __init__(self):
        self._results: Dict[Tuple[str, str], ToolCallResult] = {}

    @staticmethod
    def _key(request: ToolCallRequest) -> Tuple[str, str]:
        return request.name, json.dumps(request.arguments, sort_keys=True, default=str)

    def __len__(self) -> int:
        return len(self._results)

    def get(self, request: ToolCallRequest) -> Optional[ToolCallResult]:
        """The cached result re-addressed to `request`'s call id, or None."""
        result = self._results.get(self._key(request))
        if result is None:
            return None
        return result.model_copy(update={"id": request.id}, deep=True)

    def put(self, request: ToolCallRequest, result: ToolCallResult) -> None:
        if not result.is_error:
            self._results[self._key(request)] = result


class ToolCallCoordinator:
    """
    Drives one chat turn against one model, with at most one tool round trip.

    GENERATING -> DONE when the model just answers.
    GENERATING -> TOOL_CALL_DETECTED -> DISPATCHING -> RESUMING -> DONE otherwise.
    Tool calls requested by the resumed stream are ignored.
    """

    def __init__(
        self,
        backend: GeminiBackend,
        registry: Optional[ToolRegistry],
        tools: Optional[List[types.Tool]] = None,
        app_settings: AppSettings = settings,
    ):
        self._backend = backend
        self._registry = registry
        self._tools = tools or []
        self._settings = app_settings
        self.state = TurnState.DONE

    def _set_state(self, state: TurnState) -> None:
        logger.debug(f"Turn state: {self.state.value} -> {state.value}")
        self.state = state

    async def run_turn(
        self,
        model: str,
        contents: List[types.Content],
        system_instruction: str,
        language: str,
        collector: Optional[GroundingCollector] = None,
        tool_cache: Optional[ToolResultCache] = None,
    ) -> AsyncIterator[StreamChunk]:
        self._set_state(TurnState.GENERATING)
        requests: List[ToolCallRequest] = []
        call_parts: List[types.Part] = []

        async for event in self._backend.generate_stream(model, system_instruction, contents, self._tools):
            _collect_grounding(event, collector)
            if event.tool_calls:
                requests.extend(event.tool_calls)
                call_parts.extend(event.function_call_parts)
                continue
            if requests:
                # The pass is terminal once a tool call showed up
                if event.text:
                    logger.debug(f"Dropping text received after a tool call: '{event.text[:50]}'")
                continue
            if event.text:
                yield StreamChunk(text=event.text)

        if not requests:
            self._set_state(TurnState.DONE)
            return

        self._set_state(TurnState.TOOL_CALL_DETECTED)
        logger.info(f"Model '{model}' requested tool(s): {[r.name for r in requests]}")
        cached = [tool_cache.get(r) if tool_cache is not None else None for r in requests]
        if any(c is None for c in cached):
            yield StreamChunk.status(self._settings.status_message(language))
        else:
            logger.info("Reusing tool results from an earlier attempt of this turn")

        self._set_state(TurnState.DISPATCHING)
        results = await self._dispatch_all(requests, language, cached, tool_cache)

        self._set_state(TurnState.RESUMING)
        resumed_contents = list(contents) + [
            _model_call_turn(requests, call_parts),
            _tool_response_turn(results),
        ]
        async for event in self._backend.generate_stream(model, system_instruction, resumed_contents, self._tools):
            _collect_grounding(event, collector)
            if event.tool_calls:
                logger.warning(
                    f"Ignoring follow-up tool call(s) {[r.name for r in event.tool_calls]}: "
                    f"only one tool round trip per turn"
                )
            if event.text:
                yield StreamChunk(text=event.text)

        self._set_state(TurnState.DONE)

    async def _dispatch_all(
        self,
        requests: List[ToolCallRequest],
        language: str,
        cached: List[Optional[ToolCallResult]],
        tool_cache: Optional[ToolResultCache],
    ) -> List[ToolCallResult]:
        if self._registry is None:
            logger.warning("Tool call requested but no tools are registered")
            return [ToolCallResult.failure(r.name, "Tools are disabled", id=r.id) for r in requests]
        pending = [r for r, c in zip(requests, cached) if c is None]
        # Concurrent, joined before resuming
        fresh = iter(await asyncio.gather(*(self._registry.dispatch(r, language) for r in pending)))
        results = []
        for request, hit in zip(requests, cached):
            if hit is None:
                hit = next(fresh)
                if tool_cache is not None:
                    tool_cache.put(request, hit)
            results.append(hit)
        return results


def _collect_grounding(event: BackendEvent, collector: Optional[GroundingCollector]) -> None:
    if collector is not None and event.grounding:
        collector.add(event.grounding)


def _model_call_turn(requests: List[ToolCallRequest], call_parts: List[types.Part]) -> types.Content:
    if call_parts:
        parts = list(call_parts)
    else:
        parts = [
            types.Part(function_call=types.FunctionCall(id=r.id, name=r.name, args=r.arguments))
            for r in requests
        ]
    return types.Content(role="model", parts=parts)


def _tool_response_turn(results: List[ToolCallResult]) -> types.Content:
    return types.Content(
        role="user",
        parts=[
            types.Part(function_response=types.FunctionResponse(id=r.id, name=r.name, response=r.payload))
            for r in results
        ],
    )


__all__ = [
    "TurnState",
    "ToolResultCache",
    "ToolCallCoordinator",
]
