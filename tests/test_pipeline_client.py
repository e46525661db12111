"""
Tests for the HTTP pipeline client.

Runs a local aiohttp server that speaks the /transcribe, /chat and /tts
contract and checks request shapes and error mapping.
"""
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp import test_utils

from voice_agent.config import VoiceConfig
from voice_agent.errors import CompletionError, SynthesisError, TranscriptionError
from voice_agent.pipeline_client import HttpPipelineClient, extract_error_message


@asynccontextmanager
async def pipeline_server(routes, **config_overrides):
    app = web.Application()
    for path, handler in routes.items():
        app.router.add_post(path, handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    config = VoiceConfig(
        pipeline_base_url=f"http://{server.host}:{server.port}",
        pipeline_api_key="test-key",
        **config_overrides,
    )
    client = HttpPipelineClient(config)
    try:
        yield client
    finally:
        await client.aclose()
        await server.close()


def test_extract_error_message_prefers_detail():
    assert extract_error_message('{"detail": "quota exceeded"}') == "quota exceeded"
    assert extract_error_message('{"detail": {"message": "voice not found"}}') == "voice not found"
    assert extract_error_message('{"message": "bad model"}') == "bad model"
    assert extract_error_message("upstream timeout\n") == "upstream timeout"
    assert extract_error_message("[1, 2]") == "[1, 2]"


@pytest.mark.asyncio
async def test_transcribe_posts_multipart_audio():
    seen = {}

    async def transcribe(request):
        form = await request.post()
        seen["auth"] = request.headers.get("Authorization")
        seen["filename"] = form["file"].filename
        seen["audio"] = form["file"].file.read()
        seen["model"] = form["model"]
        return web.json_response({"text": "turn on the lights"})

    async with pipeline_server({"/transcribe": transcribe}) as client:
        text = await client.transcribe(b"RIFF-audio")

    assert text == "turn on the lights"
    assert seen == {
        "auth": "Bearer test-key",
        "filename": "audio.wav",
        "audio": b"RIFF-audio",
        "model": "whisper-1",
    }


@pytest.mark.asyncio
async def test_transcribe_non_2xx_raises_with_status():
    async def transcribe(request):
        return web.json_response({"detail": "model unavailable"}, status=503)

    async with pipeline_server({"/transcribe": transcribe}) as client:
        with pytest.raises(TranscriptionError) as exc_info:
            await client.transcribe(b"audio")

    assert exc_info.value.status == 503
    assert "model unavailable" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transcribe_rejects_malformed_body():
    async def transcribe(request):
        return web.Response(text="not json")

    async with pipeline_server({"/transcribe": transcribe}) as client:
        with pytest.raises(TranscriptionError, match="invalid JSON"):
            await client.transcribe(b"audio")


@pytest.mark.asyncio
async def test_complete_sends_history_and_max_output():
    seen = {}

    async def chat(request):
        seen.update(await request.json())
        return web.json_response({"message": "It is sunny."})

    history = [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Weather?"},
    ]
    async with pipeline_server({"/chat": chat}, max_output_tokens=80) as client:
        reply = await client.complete(history)

    assert reply == "It is sunny."
    assert seen == {"history": history, "max_output": 80}


@pytest.mark.asyncio
async def test_complete_without_message_raises():
    async def chat(request):
        return web.json_response({"choices": []})

    async with pipeline_server({"/chat": chat}) as client:
        with pytest.raises(CompletionError, match="missing"):
            await client.complete([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_synthesize_returns_audio_bytes():
    seen = {}

    async def tts(request):
        seen.update(await request.json())
        return web.Response(body=b"\x00\x01" * 50, content_type="audio/wav")

    async with pipeline_server({"/tts": tts}, tts_voice="voice-1") as client:
        audio = await client.synthesize("Hello")

    assert audio == b"\x00\x01" * 50
    assert seen == {"text": "Hello", "voice": "voice-1", "stability": 0.5, "similarity": 0.5}


@pytest.mark.asyncio
async def test_synthesize_error_uses_detail_message():
    async def tts(request):
        return web.json_response({"detail": {"message": "voice not found"}}, status=404)

    async with pipeline_server({"/tts": tts}) as client:
        with pytest.raises(SynthesisError) as exc_info:
            await client.synthesize("Hello")

    assert str(exc_info.value) == "TTS error: voice not found"
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_synthesize_blank_text_makes_no_request():
    calls = []

    async def tts(request):
        calls.append(request)
        return web.Response(body=b"audio")

    async with pipeline_server({"/tts": tts}) as client:
        assert await client.synthesize("   ") == b""

    assert calls == []


@pytest.mark.asyncio
async def test_unreachable_service_is_recoverable():
    async def transcribe(request):
        return web.json_response({"text": "x"})

    async with pipeline_server({"/transcribe": transcribe}) as client:
        pass

    # Server is closed now
    with pytest.raises(TranscriptionError, match="request failed"):
        await client.transcribe(b"audio")
    await client.aclose()
