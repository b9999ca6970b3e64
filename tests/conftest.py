"""
Shared fakes: a scripted backend, a recording audio output and helpers.
"""

import asyncio
import base64
import struct
import threading
import time
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from gemini_messenger.utils.audio import RawAudioBuffer
from gemini_messenger.utils.backend import BackendEvent, SpeechResult
from gemini_messenger.utils.config import AppSettings
from gemini_messenger.utils.errors import BackendError, ErrorKind


def capacity_error(model: str, message: str = "Resource has been exhausted (e.g. check quota).") -> BackendError:
    return BackendError(ErrorKind.CAPACITY, message, code=429, model=model)


def fatal_error(model: str, message: str = "API key not valid.") -> BackendError:
    return BackendError(ErrorKind.FATAL, message, code=401, model=model)


def text_event(text: str) -> BackendEvent:
    return BackendEvent(text=text)


class FakeBackend:
    """
    Replays scripted streams.

    streams: model -> list of scripts, one per generate_stream call. A script
    is a list of BackendEvent, or exceptions raised at that position.
    speech: model -> SpeechResult or exception.
    """

    def __init__(
        self,
        streams: Optional[Dict[str, List[List[Any]]]] = None,
        speech: Optional[Dict[str, Any]] = None,
    ):
        self.streams = {model: list(scripts) for model, scripts in (streams or {}).items()}
        self.speech = speech or {}
        self.stream_calls: List[Dict[str, Any]] = []
        self.speech_calls: List[Dict[str, Any]] = []

    async def generate_stream(self, model, system_instruction, contents, tools=None):
        self.stream_calls.append(
            {"model": model, "system_instruction": system_instruction, "contents": list(contents), "tools": tools}
        )
        scripts = self.streams.get(model)
        if not scripts:
            raise AssertionError(f"No scripted stream left for model {model}")
        for item in scripts.pop(0):
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item

    async def synthesize_speech(self, model, text, voice):
        self.speech_calls.append({"model": model, "text": text, "voice": voice})
        outcome = self.speech[model]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeOutput:
    """Stands in for a sounddevice OutputStream."""

    def __init__(self, write_delay: float = 0.0, fail_on_write: bool = False):
        self.write_delay = write_delay
        self.fail_on_write = fail_on_write
        self.blocks: List[np.ndarray] = []
        self.started = 0
        self.closed = 0
        # Writes in progress right now, and the most ever seen at once
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def start(self):
        self.started += 1

    def write(self, block):
        if self.fail_on_write:
            raise RuntimeError("device unplugged")
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.write_delay:
                time.sleep(self.write_delay)
            self.blocks.append(block.copy())
        finally:
            with self._lock:
                self.active -= 1

    def close(self):
        self.closed += 1

    @property
    def frames_written(self) -> int:
        return sum(len(b) for b in self.blocks)


def pcm_bytes(*samples: int) -> bytes:
    return struct.pack(f"<{len(samples)}h", *samples)


def speech_result(*samples: int) -> SpeechResult:
    return SpeechResult(audio_base64=base64.b64encode(pcm_bytes(*samples)).decode("ascii"), mime_type="audio/L16;rate=24000")


def make_buffer(frames: int, value: float = 0.25, sample_rate: int = 24000) -> RawAudioBuffer:
    samples = np.full((frames, 1), value, dtype=np.float32)
    return RawAudioBuffer(samples=samples, sample_rate=sample_rate, channels=1)


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        gemini_api_key="test-key",
        chat_models=["model-a", "model-b"],
        tts_models=["tts-a", "tts-b"],
        language="en",
        enable_search_grounding=False,
    )
