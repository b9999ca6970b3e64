import asyncio
import base64
import binascii
import threading
from typing import Any, Callable, Optional

import numpy as np
from loguru import logger
from pydantic import BaseModel, ConfigDict

from .config import TTS_CHANNELS, TTS_SAMPLE_RATE

# Frames written to the device per step. Bounds how long stop() takes to be heard.
PLAYBACK_BLOCK_FRAMES = 1024


class RawAudioBuffer(BaseModel):
    """Decoded float32 samples shaped (frames, channels), values in [-1.0, 1.0)."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    samples: np.ndarray
    sample_rate: int = TTS_SAMPLE_RATE
    channels: int = TTS_CHANNELS

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / self.sample_rate


# --- Codec ---

def decode_base64_audio(data: Any) -> bytes:
    """
    Decodes base64 audio. Malformed input is logged and returns b"" instead of raising.
    """
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("ascii", errors="replace")
    if not isinstance(data, str) or not data:
        if data:
            logger.warning(f"Cannot decode audio payload of type {type(data).__name__}")
        return b""
    try:
        return base64.b64decode(data.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Malformed base64 audio payload ({len(data)} chars), ignoring it: {e}")
        return b""


def pcm16_to_buffer(
    data: bytes,
    sample_rate: int = TTS_SAMPLE_RATE,
    channels: int = TTS_CHANNELS,
) -> RawAudioBuffer:
    """
    Interprets `data` as interleaved signed 16-bit little-endian PCM.

    A trailing partial frame is dropped.
    """
    if channels < 1:
        raise ValueError(f"channels must be >= 1, got {channels}")
    frame_bytes = 2 * channels
    usable = len(data) - (len(data) % frame_bytes)
    if usable != len(data):
        logger.debug(f"Truncating {len(data) - usable} trailing byte(s) of partial PCM frame")
    pcm = np.frombuffer(data[:usable], dtype="<i2")
    samples = (pcm.astype(np.float32) / 32768.0).reshape(-1, channels)
    return RawAudioBuffer(samples=samples, sample_rate=sample_rate, channels=channels)


# --- Playback ---

def _open_sounddevice_output(sample_rate: int, channels: int) -> Any:
    # Imported here: PortAudio is only needed once something is actually played
    import sounddevice as sd

    return sd.OutputStream(samplerate=sample_rate, channels=channels, dtype="float32")


OutputFactory = Callable[[int, int], Any]


class AudioPlayer:
    """
    Plays decoded speech, one buffer at a time.

    Create one player per application and close() it on shutdown. The output
    device stream is opened on the first play() and reused afterwards.
    Starting a new playback stops the current one first, so at most one
    buffer is ever audible.
    """

    def __init__(
        self,
        sample_rate: int = TTS_SAMPLE_RATE,
        channels: int = TTS_CHANNELS,
        output_factory: Optional[OutputFactory] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self._output_factory = output_factory or _open_sounddevice_output
        self._output: Optional[Any] = None
        self._current: Optional[asyncio.Task] = None
        self._closed = False
        # Held for each device write; a cancelled playback may still be finishing one
        self._write_lock = threading.Lock()

    @property
    def is_playing(self) -> bool:
        return self._current is not None and not self._current.done()

    def _ensure_output(self) -> Any:
        if self._output is None:
            logger.debug(f"Opening audio output ({self.sample_rate} Hz, {self.channels} channel(s))")
            self._output = self._output_factory(self.sample_rate, self.channels)
            self._output.start()
        return self._output

    def play(self, buffer: RawAudioBuffer) -> asyncio.Task:
        """
        Starts playing `buffer` and returns a task that completes when it ends.

        Any active playback is cut immediately and its task is cancelled.
        """
        if self._closed:
            raise RuntimeError("AudioPlayer is closed")
        self.stop()
        task = asyncio.get_running_loop().create_task(self._play(buffer))
        self._current = task
        return task

    def stop(self) -> None:
        """Stops the active playback, if any. Safe to call at any time."""
        task = self._current
        self._current = None
        if task is not None and not task.done():
            logger.debug("Stopping active playback")
            task.cancel()

    async def _play(self, buffer: RawAudioBuffer) -> None:
        if buffer.frame_count == 0:
            return
        if buffer.sample_rate != self.sample_rate or buffer.channels != self.channels:
            logger.warning(
                f"Skipping playback: buffer is {buffer.sample_rate} Hz/{buffer.channels}ch, "
                f"output is {self.sample_rate} Hz/{self.channels}ch"
            )
            return
        try:
            output = self._ensure_output()
        except Exception as e:
            logger.warning(f"Audio output unavailable, skipping playback: {e}")
            return

        logger.debug(f"Playing {buffer.duration_seconds:.2f}s of audio")
        samples = buffer.samples
        try:
            for start in range(0, buffer.frame_count, PLAYBACK_BLOCK_FRAMES):
                block = np.ascontiguousarray(samples[start:start + PLAYBACK_BLOCK_FRAMES])
                # Blocking device write, keep it off the event loop
                await asyncio.to_thread(self._write_block, output, block)
        except asyncio.CancelledError:
            logger.debug("Playback cancelled")
            raise
        except Exception as e:
            logger.warning(f"Audio playback failed, continuing silently: {e}")
            self._discard_output()

    def _write_block(self, output: Any, block: np.ndarray) -> None:
        with self._write_lock:
            output.write(block)

    def _discard_output(self) -> None:
        output, self._output = self._output, None
        if output is None:
            return
        try:
            output.close()
        except Exception as e:
            logger.debug(f"Error closing audio output: {e}")

    def close(self) -> None:
        """Stops playback and releases the output device."""
        self.stop()
        self._discard_output()
        self._closed = True


__all__ = [
    "RawAudioBuffer",
    "decode_base64_audio",
    "pcm16_to_buffer",
    "AudioPlayer",
]
