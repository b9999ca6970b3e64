import re
import time
from typing import List

from loguru import logger

from .audio import decode_base64_audio
from .backend import GeminiBackend, SpeechResult
from .failover import FailoverExecutor


def prepare_text_for_speech(text: str) -> str:
    """
    Strips markdown so the voice reads the answer, not its markup.
    """
    # Code blocks are not read aloud
    processed_text = re.sub(r"```.*?```", " ", text, flags=re.DOTALL)
    logger.debug(f"Text after code block removal: '{processed_text[:50]}...'")

    # Remove markdown bullet points (e.g., "* ", "- ", "+ ") and headings from the beginning of lines
    processed_text = re.sub(r"^\s*[\*\-\+]\s+", "", processed_text, flags=re.MULTILINE)
    processed_text = re.sub(r"^\s*#{1,6}\s+", "", processed_text, flags=re.MULTILINE)

    # [label](url) -> label
    processed_text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", processed_text)

    # **bold**, *italic*, `code` -> plain text
    processed_text = re.sub(r"\*\*(.*?)\*\*", r"\1", processed_text)
    processed_text = re.sub(r"\*(.*?)\*", r"\1", processed_text)
    processed_text = re.sub(r"`([^`]*)`", r"\1", processed_text)
    logger.debug(f"Text after markdown stripping: '{processed_text[:50]}...'")

    return re.sub(r"[ \t]+", " ", processed_text).strip()


async def synthesize(
    text: str,
    executor: FailoverExecutor,
    backend: GeminiBackend,
    candidates: List[str],
    voice: str,
) -> bytes:
    """
    Synthesizes `text` with the first TTS candidate that has capacity.

    Returns raw PCM bytes (b"" for empty text). Raises CandidatesExhaustedError
    when every candidate is out of capacity.
    """
    if not text or text.isspace():
        logger.warning("synthesize called with empty or whitespace text. Skipping.")
        return b""

    processed_text = prepare_text_for_speech(text)
    if not processed_text:
        logger.warning("Nothing left to speak after markdown stripping. Skipping.")
        return b""

    start_tts = time.time()

    async def _op(model: str) -> SpeechResult:
        return await backend.synthesize_speech(model, processed_text, voice)

    result = await executor.execute(candidates, _op)
    audio_bytes = decode_base64_audio(result.audio_base64)
    logger.info(
        f"Finished TTS after {time.time() - start_tts:.2f}s ({len(processed_text)} chars, {len(audio_bytes)} bytes)"
    )
    return audio_bytes
