import asyncio
import json
from datetime import datetime, timedelta, timezone

from autofill_relay.channel_registry import ChannelRegistry
from autofill_relay.dispatcher import ResultDispatcher, UploadResult
from autofill_relay.errors import AnalysisError, AnalysisTimeoutError
from autofill_relay.push_channels import SCAN_RESULTS, EventStreamChannel
from autofill_relay.token_store import TOKEN_NOT_FOUND, TokenStore


def _setup(token: str = "abc"):
    store = TokenStore()
    store.register(token, datetime.now(timezone.utc) + timedelta(seconds=60))
    registry = ChannelRegistry()
    return store, registry, ResultDispatcher(store, registry)


def test_dispatch_without_channel_returns_http_body_and_consumes_token():
    store, registry, dispatcher = _setup()

    outcome = asyncio.run(dispatcher.dispatch("abc", UploadResult.succeeded({"name": "Jane"})))

    assert outcome.status_code == 200
    assert outcome.body == {"success": True, "results": {"name": "Jane"}}
    assert outcome.pushed is False
    assert store.validate("abc") == TOKEN_NOT_FOUND


def test_dispatch_pushes_identical_payload_and_closes_channel(fake_channel_cls):
    store, registry, dispatcher = _setup()
    channel = fake_channel_cls()
    registry.attach("abc", channel)

    outcome = asyncio.run(dispatcher.dispatch("abc", UploadResult.succeeded({"name": "Jane"})))

    assert outcome.pushed is True
    assert channel.sent == [(SCAN_RESULTS, outcome.body)]
    assert channel.close_calls == 1
    assert registry.lookup("abc") is None
    assert "abc" not in store


def test_dispatch_failure_result_still_cleans_up(fake_channel_cls, tmp_path):
    store, registry, dispatcher = _setup()
    channel = fake_channel_cls()
    registry.attach("abc", channel)
    stored = tmp_path / "upload.png"
    stored.write_bytes(b"\x89PNG")

    outcome = asyncio.run(
        dispatcher.dispatch(
            "abc",
            UploadResult.failed(AnalysisError("Gemini request failed with HTTP 401.")),
            artifacts=[stored],
        )
    )

    assert outcome.status_code == 500
    assert outcome.body == {
        "success": False,
        "error": "AnalysisError",
        "message": "Gemini request failed with HTTP 401.",
    }
    assert channel.sent == [(SCAN_RESULTS, outcome.body)]
    assert not stored.exists()
    assert "abc" not in store
    assert registry.count() == 0


def test_timeout_result_is_tagged_distinctly():
    _, _, dispatcher = _setup()

    outcome = asyncio.run(dispatcher.dispatch("abc", UploadResult.failed(AnalysisTimeoutError())))

    assert outcome.status_code == 504
    assert outcome.body["error"] == "Timeout"


def test_push_failure_is_not_propagated(fake_channel_cls):
    store, registry, dispatcher = _setup()
    channel = fake_channel_cls(fail_send=True, fail_close=True)
    registry.attach("abc", channel)

    outcome = asyncio.run(dispatcher.dispatch("abc", UploadResult.succeeded({"name": "Jane"})))

    assert outcome.status_code == 200
    assert outcome.pushed is False
    assert outcome.warnings
    assert channel.close_calls == 1
    assert registry.lookup("abc") is None
    assert "abc" not in store


def test_closed_channel_is_not_written_but_is_released(fake_channel_cls):
    store, registry, dispatcher = _setup()
    channel = fake_channel_cls(open_=False)
    registry.attach("abc", channel)

    outcome = asyncio.run(dispatcher.dispatch("abc", UploadResult.succeeded({"name": "Jane"})))

    assert outcome.pushed is False
    assert channel.sent == []
    assert channel.close_calls == 1
    assert registry.count() == 0


def test_dispatch_to_event_stream_channel_delivers_scan_results():
    store, registry, dispatcher = _setup()

    async def scenario():
        channel = EventStreamChannel("abc", keepalive_seconds=5)
        registry.attach("abc", channel)
        stream = channel.events()
        await stream.__anext__()
        await stream.__anext__()
        outcome = await dispatcher.dispatch("abc", UploadResult.succeeded({"id_number": "X123"}))
        chunks = [chunk async for chunk in stream]
        return outcome, chunks

    outcome, chunks = asyncio.run(scenario())

    assert len(chunks) == 1
    lines = chunks[0].decode("utf-8").strip().splitlines()
    assert lines[0] == f"event: {SCAN_RESULTS}"
    assert json.loads(lines[1].removeprefix("data: ")) == outcome.body
