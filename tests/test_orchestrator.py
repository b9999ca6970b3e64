import asyncio

import pytest
from google.genai import types

from gemini_messenger.models import ConversationTurn, GroundingSource, Role, StreamChunk, ToolCallRequest
from gemini_messenger.orchestrator import StreamOrchestrator
from gemini_messenger.utils.audio import AudioPlayer
from gemini_messenger.utils.backend import BackendEvent
from gemini_messenger.utils.errors import BackendError, CandidatesExhaustedError, ConfigurationError, ErrorKind
from gemini_messenger.utils.tools import ToolRegistry

from .conftest import FakeBackend, FakeOutput, capacity_error, fatal_error, pcm_bytes, speech_result, text_event

SEOUL = GroundingSource(title="Korea Meteorological Administration", uri="https://www.weather.go.kr")


def weather_registry(calls):
    async def get_weather(args, language):
        calls.append(args)
        return {"temperature": 5, "condition": "Clear"}

    registry = ToolRegistry()
    registry.register(types.FunctionDeclaration(name="get_weather", description="weather"), get_weather)
    return registry


def make_orchestrator(app_settings, backend, registry=None, output=None):
    output = output or FakeOutput()
    player = AudioPlayer(app_settings.tts_sample_rate, app_settings.tts_channels, output_factory=lambda r, c: output)
    return StreamOrchestrator(app_settings, backend=backend, registry=registry or ToolRegistry(), player=player)


@pytest.mark.asyncio
async def test_seoul_weather_turn_end_to_end(app_settings):
    calls = []
    published = []
    backend = FakeBackend({
        "model-a": [[capacity_error("model-a")]],
        "model-b": [
            [BackendEvent(tool_calls=[ToolCallRequest(name="get_weather", arguments={"location": "Seoul"}, id="w1")])],
            [
                BackendEvent(text="It is 5°C ", grounding=[SEOUL], has_grounding_metadata=True),
                text_event("and clear in Seoul."),
            ],
        ],
    })
    orchestrator = make_orchestrator(app_settings, backend, weather_registry(calls))

    chunks = [c async for c in orchestrator.stream_chat("What's the weather in Seoul?", [], on_sources=published.append)]

    assert calls == [{"location": "Seoul"}]
    assert chunks[0] == StreamChunk.status("Looking this up...")
    answer = "".join(c.text for c in chunks if not c.is_status)
    assert answer == "It is 5°C and clear in Seoul."
    assert not any(c.is_reset for c in chunks)
    assert published == [[SEOUL]]
    assert [c["model"] for c in backend.stream_calls] == ["model-a", "model-b", "model-b"]
    assert "Always answer in English" in backend.stream_calls[0]["system_instruction"]


@pytest.mark.asyncio
async def test_history_and_language_reach_backend(app_settings):
    backend = FakeBackend({"model-a": [[text_event("서울은 맑아요.")]]})
    orchestrator = make_orchestrator(app_settings, backend)
    history = [
        ConversationTurn(role=Role.USER, text="안녕"),
        ConversationTurn(role=Role.MODEL, text="안녕하세요!"),
    ]

    chunks = [c async for c in orchestrator.stream_chat("서울 날씨?", history, language="ko")]

    assert [c.text for c in chunks] == ["서울은 맑아요."]
    call = backend.stream_calls[0]
    assert [c.role for c in call["contents"]] == ["user", "model", "user"]
    assert "Korean" in call["system_instruction"]


@pytest.mark.asyncio
async def test_stream_chat_response_callbacks(app_settings):
    received = []
    statuses = []
    backend = FakeBackend({
        "model-a": [[text_event("Partial "), capacity_error("model-a")]],
        "model-b": [[text_event("Full "), text_event("answer.")]],
    })
    orchestrator = make_orchestrator(app_settings, backend)

    final = await orchestrator.stream_chat_response(
        "Hi", [], on_chunk=lambda text, is_reset: received.append((text, is_reset)), on_status=statuses.append
    )

    assert final == "Full answer."
    assert received == [("Partial ", False), ("", True), ("Full ", False), ("answer.", False)]
    assert statuses == []


@pytest.mark.asyncio
async def test_every_model_out_of_capacity(app_settings):
    backend = FakeBackend({
        "model-a": [[capacity_error("model-a", "a is busy")]],
        "model-b": [[capacity_error("model-b", "b is busy")]],
    })
    orchestrator = make_orchestrator(app_settings, backend)

    with pytest.raises(CandidatesExhaustedError, match="b is busy"):
        [c async for c in orchestrator.stream_chat("Hi", [])]


@pytest.mark.asyncio
async def test_fatal_error_stops_turn(app_settings):
    backend = FakeBackend({"model-a": [[fatal_error("model-a")]], "model-b": [[text_event("never")]]})
    orchestrator = make_orchestrator(app_settings, backend)

    with pytest.raises(BackendError) as excinfo:
        [c async for c in orchestrator.stream_chat("Hi", [])]

    assert excinfo.value.kind == ErrorKind.FATAL
    assert len(backend.stream_calls) == 1


@pytest.mark.asyncio
async def test_missing_credential_fails_before_any_request(app_settings):
    app_settings.gemini_api_key = None
    backend = FakeBackend({"model-a": [[text_event("never")]]})
    orchestrator = make_orchestrator(app_settings, backend)

    with pytest.raises(ConfigurationError):
        [c async for c in orchestrator.stream_chat("Hi", [])]
    assert backend.stream_calls == []


@pytest.mark.asyncio
async def test_generate_and_play_speech(app_settings):
    output = FakeOutput()
    backend = FakeBackend(speech={"tts-a": capacity_error("tts-a"), "tts-b": speech_result(16384, -16384, 0)})
    orchestrator = make_orchestrator(app_settings, backend, output=output)

    audio = await orchestrator.generate_speech("Hello from *Seoul*")
    await orchestrator.play_raw_audio(audio)

    assert audio == pcm_bytes(16384, -16384, 0)
    assert backend.speech_calls[-1]["text"] == "Hello from Seoul"
    assert output.frames_written == 3
    assert float(output.blocks[0][0, 0]) == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_stop_audio_cancels_playback(app_settings):
    output = FakeOutput(write_delay=0.005)
    orchestrator = make_orchestrator(app_settings, FakeBackend(), output=output)

    task = orchestrator.play_raw_audio(pcm_bytes(*([1000] * 24000)))
    await asyncio.sleep(0.01)
    orchestrator.stop_audio()

    with pytest.raises(asyncio.CancelledError):
        await task
    orchestrator.close()
    assert output.closed == 1


@pytest.mark.asyncio
async def test_failover_after_tool_call_reuses_results(app_settings):
    calls = []
    weather_call = BackendEvent(tool_calls=[ToolCallRequest(name="get_weather", arguments={"location": "Seoul"}, id="w1")])
    backend = FakeBackend({
        "model-a": [[weather_call], [text_event("It is 5°C"), capacity_error("model-a")]],
        "model-b": [[weather_call], [text_event("Seoul: 5°C and clear.")]],
    })
    orchestrator = make_orchestrator(app_settings, backend, weather_registry(calls))

    chunks = [c async for c in orchestrator.stream_chat("What's the weather in Seoul?", [])]

    assert calls == [{"location": "Seoul"}]
    assert [c.is_status for c in chunks].count(True) == 1
    assert [c.is_reset for c in chunks].count(True) == 1
    assert chunks[-1].text == "Seoul: 5°C and clear."
    assert [c["model"] for c in backend.stream_calls] == ["model-a", "model-a", "model-b", "model-b"]
