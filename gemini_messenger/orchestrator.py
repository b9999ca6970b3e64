# gemini_messenger/orchestrator.py
import asyncio
from typing import AsyncIterator, Callable, List, Optional, Sequence

from loguru import logger

from .models import BinaryAttachment, ConversationTurn, GroundingSource, StreamChunk
from .utils.audio import AudioPlayer, pcm16_to_buffer
from .utils.backend import GeminiBackend
from .utils.config import AppSettings, normalize_language, settings
from .utils.failover import FailoverExecutor
from .utils.grounding import GroundingCollector
from .utils.llms import build_contents, build_system_instruction, build_tools
from .utils.tool_calls import ToolCallCoordinator, ToolResultCache
from .utils.tools import ToolRegistry, default_registry
from .utils.tts import synthesize

ChunkCallback = Callable[[str, bool], None]
SourcesCallback = Callable[[List[GroundingSource]], None]
StatusCallback = Callable[[str], None]


class StreamOrchestrator:
    """
    Entry point used by the chat front end.

    Wires the failover loop, the tool-call coordinator and the grounding
    collector for text, and the failover loop plus the audio player for speech.
    """

    def __init__(
        self,
        app_settings: AppSettings = settings,
        backend: Optional[GeminiBackend] = None,
        registry: Optional[ToolRegistry] = None,
        player: Optional[AudioPlayer] = None,
    ):
        self.settings = app_settings
        self.backend = backend or GeminiBackend(app_settings.gemini_api_key)
        self.executor = FailoverExecutor(app_settings.gemini_api_key)
        if registry is None and app_settings.enable_tools:
            registry = default_registry(app_settings)
        self.registry = registry if app_settings.enable_tools else None
        self.coordinator = ToolCallCoordinator(
            self.backend,
            self.registry,
            build_tools(self.registry, app_settings.enable_search_grounding),
            app_settings,
        )
        self.player = player or AudioPlayer(app_settings.tts_sample_rate, app_settings.tts_channels)

    async def stream_chat(
        self,
        prompt: str,
        history: Sequence[ConversationTurn],
        language: Optional[str] = None,
        attachment: Optional[BinaryAttachment] = None,
        reference_text: Optional[str] = None,
        reference_type: Optional[str] = None,
        on_sources: Optional[SourcesCallback] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Streams the answer to `prompt` as StreamChunks.

        A chunk with is_reset=True means everything received so far must be
        discarded (a fallback model is starting over). Chunks with
        is_status=True are transient notices, not part of the answer.
        """
        language = normalize_language(language or self.settings.language)
        contents = build_contents(history, prompt, attachment, reference_text, reference_type)
        system_instruction = build_system_instruction(language, self.settings.system_message)
        collector = GroundingCollector(on_sources)
        # Shared by all candidates so tools run at most once per turn
        tool_cache = ToolResultCache()
        logger.info(f"Streaming answer ({language}, {len(history)} history turn(s), attachment={attachment is not None})")

        def _open(model: str) -> AsyncIterator[StreamChunk]:
            return self.coordinator.run_turn(model, contents, system_instruction, language, collector, tool_cache)

        async for chunk in self.executor.stream(self.settings.chat_models, _open):
            yield chunk

    async def stream_chat_response(
        self,
        prompt: str,
        history: Sequence[ConversationTurn],
        on_chunk: ChunkCallback,
        language: Optional[str] = None,
        attachment: Optional[BinaryAttachment] = None,
        reference_text: Optional[str] = None,
        reference_type: Optional[str] = None,
        on_sources: Optional[SourcesCallback] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """Callback flavour of stream_chat(). Returns the final answer text."""
        full_text = ""
        async for chunk in self.stream_chat(
            prompt,
            history,
            language=language,
            attachment=attachment,
            reference_text=reference_text,
            reference_type=reference_type,
            on_sources=on_sources,
        ):
            if chunk.is_status:
                if on_status is not None:
                    on_status(chunk.text)
                continue
            if chunk.is_reset:
                full_text = ""
            else:
                full_text += chunk.text
            on_chunk(chunk.text, chunk.is_reset)
        return full_text

    async def generate_speech(self, text: str) -> bytes:
        """Raw PCM for `text`. Raises CandidatesExhaustedError if no TTS model has capacity."""
        return await synthesize(
            text,
            self.executor,
            self.backend,
            self.settings.tts_models,
            self.settings.tts_voice,
        )

    def play_raw_audio(self, data: bytes) -> asyncio.Task:
        """Plays PCM bytes from generate_speech(), replacing any current playback."""
        buffer = pcm16_to_buffer(data, self.settings.tts_sample_rate, self.settings.tts_channels)
        return self.player.play(buffer)

    def stop_audio(self) -> None:
        self.player.stop()

    def close(self) -> None:
        self.player.close()
