from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

from loguru import logger

from ..models import StreamChunk
from .errors import BackendError, CandidatesExhaustedError, ConfigurationError

T = TypeVar("T")


class FailoverExecutor:
    """
    Runs an operation against an ordered list of candidate models.

    Candidates are tried one at a time, in order. Only capacity errors move on
    to the next candidate; anything else propagates right away.
    """

    def __init__(self, credential: Optional[str]):
        self._credential = credential

    def _check_ready(self, candidates: List[str]) -> None:
        if not self._credential:
            raise ConfigurationError("No Gemini API key configured (set GEMINI_API_KEY or pass --gemini-api-key).")
        if not candidates:
            raise ConfigurationError("The candidate model list is empty.")

    async def execute(self, candidates: List[str], op: Callable[[str], Awaitable[T]]) -> T:
        """Returns the result of the first candidate for which `op(model)` succeeds."""
        self._check_ready(candidates)
        last_error: Optional[BackendError] = None

        for index, model in enumerate(candidates):
            logger.debug(f"Failover attempt {index + 1}/{len(candidates)} with model '{model}'")
            try:
                result = await op(model)
            except BackendError as e:
                if not e.retryable:
                    logger.error(f"Model '{model}' failed with a fatal error, not trying other candidates: {e.message}")
                    raise
                logger.warning(f"Model '{model}' is out of capacity ({e.message}). Trying next candidate.")
                last_error = e
                continue
            if index > 0:
                logger.info(f"Request served by fallback model '{model}'")
            return result

        logger.error(f"All {len(candidates)} candidate models are out of capacity.")
        raise CandidatesExhaustedError(candidates, last_error)

    async def stream(
        self,
        candidates: List[str],
        open_stream: Callable[[str], AsyncIterator[StreamChunk]],
    ) -> AsyncIterator[StreamChunk]:
        """
        Streaming variant of execute().

        Whenever an attempt ends in failure after some of its text was
        forwarded, a single reset chunk is yielded right away, so the consumer
        drops the partial answer before anything else arrives. This holds for
        failovers, for the final exhaustion and for errors that are not retried.
        """
        self._check_ready(candidates)
        last_error: Optional[BackendError] = None
        # Answer text forwarded since the last reset
        owes_reset = False

        for index, model in enumerate(candidates):
            logger.debug(f"Failover stream attempt {index + 1}/{len(candidates)} with model '{model}'")
            try:
                async for chunk in open_stream(model):
                    if chunk.is_reset:
                        # Resets are only issued here
                        continue
                    if not chunk.is_status and chunk.text:
                        owes_reset = True
                    yield chunk
            except BackendError as e:
                if owes_reset:
                    logger.debug("Signalling reset to discard the partial answer")
                    yield StreamChunk.reset()
                    owes_reset = False
                if not e.retryable:
                    logger.error(f"Model '{model}' failed with a fatal error, not trying other candidates: {e.message}")
                    raise
                logger.warning(f"Model '{model}' is out of capacity mid-stream ({e.message}). Trying next candidate.")
                last_error = e
                continue
            except Exception as e:
                logger.error(f"Model '{model}' stream failed unexpectedly: {e!r}")
                if owes_reset:
                    yield StreamChunk.reset()
                raise
            if index > 0:
                logger.info(f"Stream served by fallback model '{model}'")
            return

        logger.error(f"All {len(candidates)} candidate models are out of capacity.")
        raise CandidatesExhaustedError(candidates, last_error)
