import asyncio
import datetime
import sys
from pathlib import Path
from typing import List, Optional

import click
import platformdirs
from loguru import logger

from .models import ConversationTurn, GroundingSource, Role
from .orchestrator import StreamOrchestrator
from .utils.config import (
    APP_VERSION,
    DEFAULT_CHAT_MODELS,
    DEFAULT_TTS_MODELS,
    GEMINI_TTS_VOICES,
    SUPPORTED_LANGUAGES,
    normalize_language,
    parse_model_list,
    settings,
)
from .utils.env import (
    GEMINI_API_KEY_ENV,
    GEMINI_CHAT_MODELS_ENV,
    GEMINI_TTS_MODELS_ENV,
    GEMINI_TTS_VOICE_ENV,
    APP_LANGUAGE_ENV,
    SYSTEM_MESSAGE_ENV,
    TOOL_HTTP_TIMEOUT_ENV,
    PAGE_FETCH_MAX_CHARS_ENV,
)
from .utils.errors import BackendError
from .utils.llms import format_reference
from .utils.logging_config import setup_logging


def _log_file_path() -> Optional[Path]:
    """Log file in the user log directory, or None if it cannot be created."""
    try:
        log_base_dir = Path(platformdirs.user_log_dir("GeminiMessenger", "GeminiMessenger"))
        settings.app_log_dir = log_base_dir / "logs"
        settings.app_log_dir.mkdir(parents=True, exist_ok=True)
        return settings.app_log_dir / f"log_{settings.startup_timestamp_str}.log"
    except Exception as e:
        print(f"Warning: could not set up the log directory ({e}). File logging will be disabled.", file=sys.stderr)
        return None


def _print_sources(sources: List[GroundingSource]) -> None:
    if not sources:
        return
    click.secho("\nSources:", fg="cyan")
    for i, source in enumerate(sources, start=1):
        click.secho(f"  [{i}] {source.title} - {source.uri}", fg="cyan")


async def _answer(
    orchestrator: StreamOrchestrator,
    prompt: str,
    history: List[ConversationTurn],
    language: str,
    reference_text: Optional[str],
) -> Optional[str]:
    """Streams one answer to the terminal. Returns the final text, or None on failure."""
    latest_sources: List[GroundingSource] = []

    def on_sources(sources: List[GroundingSource]) -> None:
        latest_sources[:] = sources

    answer = ""
    try:
        async for chunk in orchestrator.stream_chat(
            prompt,
            history,
            language=language,
            reference_text=reference_text,
            reference_type="document" if reference_text else None,
            on_sources=on_sources,
        ):
            if chunk.is_reset:
                if answer:
                    click.secho("\n[partial answer discarded]", fg="yellow", err=True)
                answer = ""
                continue
            if chunk.is_status:
                click.secho(f"\n({chunk.text})", dim=True, err=True)
                continue
            answer += chunk.text
            click.echo(chunk.text, nl=False)
    except BackendError as e:
        logger.debug(f"Turn failed: {e!r}")
        click.secho(f"\n[Error: {e.message}]", fg="red", err=True)
        return None
    except Exception as e:
        logger.exception(f"Unexpected error while streaming the answer: {e}")
        click.secho(f"\n[Error: {e}]", fg="red", err=True)
        return None

    click.echo()
    _print_sources(latest_sources)
    return answer


async def _speak(orchestrator: StreamOrchestrator, text: str) -> None:
    try:
        audio = await orchestrator.generate_speech(text)
    except BackendError as e:
        click.secho(f"[Speech unavailable: {e.message}]", fg="yellow", err=True)
        return
    except Exception as e:
        logger.exception(f"Unexpected error while synthesizing speech: {e}")
        click.secho(f"[Speech unavailable: {e}]", fg="yellow", err=True)
        return
    if audio:
        # Not awaited: the next prompt can be typed while the answer is spoken
        orchestrator.play_raw_audio(audio)


async def run_chat(orchestrator: StreamOrchestrator, reference_text: Optional[str]) -> None:
    history: List[ConversationTurn] = []
    language = settings.language
    click.secho(f"Gemini Messenger {APP_VERSION} - /quit to exit, /stop to stop audio, /lang <code> to switch language", fg="green")

    while True:
        try:
            prompt = await asyncio.to_thread(click.prompt, click.style("you", fg="blue"), prompt_suffix="> ")
        except (EOFError, click.Abort):
            click.echo()
            break
        prompt = prompt.strip()
        if not prompt:
            continue
        if prompt in ("/quit", "/exit"):
            break
        if prompt == "/stop":
            orchestrator.stop_audio()
            continue
        if prompt.startswith("/lang"):
            requested = prompt[len("/lang"):].strip()
            language = normalize_language(requested)
            if requested.lower() != language:
                click.secho(f"Unsupported language '{requested}', using '{language}'. Supported: {', '.join(SUPPORTED_LANGUAGES)}", fg="yellow")
            logger.info(f"Language set to {language}")
            continue

        orchestrator.stop_audio()
        answer = await _answer(orchestrator, prompt, history, language, reference_text)
        if answer is None:
            continue
        user_text = prompt
        if reference_text:
            # Injected once, then carried by the history
            user_text = f"{format_reference(reference_text, 'document')}\n\n{prompt}"
            reference_text = None
        history = history + [
            ConversationTurn(role=Role.USER, text=user_text),
            ConversationTurn(role=Role.MODEL, text=answer),
        ]
        if settings.speak_responses and answer.strip():
            await _speak(orchestrator, answer)


@click.command(help="Chat with Gemini from the terminal, with model failover, tools, citations and spoken answers.")
@click.option(
    "--gemini-api-key",
    type=str,
    default=GEMINI_API_KEY_ENV,
    show_default=False,
    help="Gemini API key. Env: GEMINI_API_KEY (or API_KEY).",
)
@click.option(
    "--chat-models",
    type=str,
    default=GEMINI_CHAT_MODELS_ENV,
    show_default=False,
    help=f"Comma-separated chat models, priority first. Env: GEMINI_CHAT_MODELS. Default: {','.join(DEFAULT_CHAT_MODELS)}.",
)
@click.option(
    "--tts-models",
    type=str,
    default=GEMINI_TTS_MODELS_ENV,
    show_default=False,
    help=f"Comma-separated speech models, priority first. Env: GEMINI_TTS_MODELS. Default: {','.join(DEFAULT_TTS_MODELS)}.",
)
@click.option(
    "--tts-voice",
    type=str,
    default=GEMINI_TTS_VOICE_ENV,
    show_default=True,
    help=f"Prebuilt voice for spoken answers ({', '.join(GEMINI_TTS_VOICES)}). Env: GEMINI_TTS_VOICE.",
)
@click.option(
    "--language",
    type=click.Choice(SUPPORTED_LANGUAGES, case_sensitive=False),
    default=normalize_language(APP_LANGUAGE_ENV),
    show_default=True,
    help="Answer language. Env: APP_LANGUAGE.",
)
@click.option(
    "--system-message",
    type=str,
    default=SYSTEM_MESSAGE_ENV,
    show_default=False,
    help="Replaces the default assistant persona. Env: SYSTEM_MESSAGE.",
)
@click.option(
    "--reference-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Text file injected as reference material into the first question.",
)
@click.option("--speak/--no-speak", default=False, show_default=True, help="Read each answer aloud.")
@click.option("--tools/--no-tools", "enable_tools", default=True, show_default=True, help="Let the model call the weather, clock and page fetch tools.")
@click.option("--search/--no-search", "enable_search", default=True, show_default=True, help="Enable Google Search grounding (citations).")
@click.option(
    "--tool-timeout",
    type=click.FLOAT,
    default=float(TOOL_HTTP_TIMEOUT_ENV),
    show_default=True,
    help="HTTP timeout in seconds for tool providers. Env: TOOL_HTTP_TIMEOUT.",
)
@click.option(
    "--page-max-chars",
    type=click.INT,
    default=int(PAGE_FETCH_MAX_CHARS_ENV),
    show_default=True,
    help="Maximum characters of page text returned by the page fetch tool. Env: PAGE_FETCH_MAX_CHARS.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable DEBUG logging on the console.")
def main(
    gemini_api_key: Optional[str],
    chat_models: Optional[str],
    tts_models: Optional[str],
    tts_voice: str,
    language: str,
    system_message: Optional[str],
    reference_file: Optional[Path],
    speak: bool,
    enable_tools: bool,
    enable_search: bool,
    tool_timeout: float,
    page_max_chars: int,
    verbose: bool,
) -> int:
    settings.startup_timestamp_str = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    settings.verbose = verbose

    # --- Logging Setup (Early) ---
    setup_logging("DEBUG" if verbose else "WARNING", _log_file_path(), verbose)
    logger.info(f"Application Version: {APP_VERSION}")

    # --- Backend Config ---
    settings.gemini_api_key = gemini_api_key
    if not settings.gemini_api_key:
        logger.critical("Gemini API Key (--gemini-api-key or GEMINI_API_KEY env) is REQUIRED. Exiting.")
        sys.exit(1)
    settings.chat_models = parse_model_list(chat_models, DEFAULT_CHAT_MODELS)
    settings.tts_models = parse_model_list(tts_models, DEFAULT_TTS_MODELS)
    logger.info(f"Chat model candidates: {settings.chat_models}")
    logger.info(f"TTS model candidates: {settings.tts_models}")

    if tts_voice not in GEMINI_TTS_VOICES:
        logger.warning(f"TTS voice '{tts_voice}' is not a known prebuilt voice. Using it anyway.")
    settings.tts_voice = tts_voice

    # --- Conversation Config ---
    settings.language = normalize_language(language)
    if system_message is not None and system_message.strip():
        settings.system_message = system_message.strip()
    settings.speak_responses = speak
    settings.enable_tools = enable_tools
    settings.enable_search_grounding = enable_search
    settings.tool_http_timeout = tool_timeout
    settings.page_fetch_max_chars = page_max_chars
    logger.info(
        f"Language: {settings.language}, tools: {settings.enable_tools}, "
        f"search grounding: {settings.enable_search_grounding}, speak: {settings.speak_responses}"
    )

    reference_text: Optional[str] = None
    if reference_file is not None:
        reference_text = reference_file.read_text(encoding="utf-8")
        logger.info(f"Loaded reference text from {reference_file} ({len(reference_text)} chars)")

    orchestrator = StreamOrchestrator(settings)
    try:
        asyncio.run(run_chat(orchestrator, reference_text))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
    finally:
        orchestrator.close()
    return 0
