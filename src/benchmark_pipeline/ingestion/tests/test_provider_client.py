"""
Tests for ProviderGate spacing/cooldown and ProviderClient error mapping.
"""
import json

import aiohttp
import pytest

from benchmark_pipeline.ingestion.client import (
    DEFAULT_RETRY_AFTER_SECONDS,
    NotFoundError,
    ProviderClient,
    ProviderError,
    RateLimitedError,
    TransientNetworkError,
    parse_retry_after,
)


class FakeResponse:
    def __init__(self, status: int, body: str = "", headers: dict = None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def text(self):
        return self._body

    async def json(self, content_type=None):
        return json.loads(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Hands out scripted responses (or raises scripted errors) in order."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


@pytest.fixture
def make_client(gate):
    def _make(*responses):
        session = FakeSession(responses)
        client = ProviderClient(gate, session=session, retry_delay=0.0)
        return client, session
    return _make


# =============================================================================
# ProviderGate
# =============================================================================


class TestProviderGate:
    @pytest.mark.asyncio
    async def test_first_request_does_not_wait(self, gate, fake_clock):
        await gate.acquire()
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_requests_are_spaced_by_min_interval(self, gate, fake_clock):
        await gate.acquire()
        await gate.acquire()
        await gate.acquire()

        assert fake_clock.sleeps == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_trip_delays_every_caller(self, gate, fake_clock):
        await gate.acquire()
        gate.trip(60.0)

        assert gate.is_cooling_down
        await gate.acquire()

        assert fake_clock.sleeps == [60.0]
        assert not gate.is_cooling_down

    def test_trip_keeps_later_deadline(self, gate):
        gate.trip(60.0)
        gate.trip(10.0)

        assert gate.cooldown_remaining == pytest.approx(60.0)
        assert gate.trip_count == 2

    def test_to_dict(self, gate):
        gate.trip(5.0)
        data = gate.to_dict()

        assert data["provider"] == "test"
        assert data["trip_count"] == 1
        assert data["cooldown_remaining_seconds"] == 5.0


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("12", 12.0),
            (None, DEFAULT_RETRY_AFTER_SECONDS),
            ("soon", DEFAULT_RETRY_AFTER_SECONDS),
            ("0", DEFAULT_RETRY_AFTER_SECONDS),
        ],
    )
    def test_values(self, value, expected):
        assert parse_retry_after(value) == expected


# =============================================================================
# ProviderClient
# =============================================================================


class TestProviderClient:
    @pytest.mark.asyncio
    async def test_json_response(self, make_client):
        client, _ = make_client(FakeResponse(200, '{"ok": true}'))
        assert await client._request("GET", "https://example.test/a") == {"ok": True}

    @pytest.mark.asyncio
    async def test_text_response(self, make_client):
        client, _ = make_client(FakeResponse(200, "line1\nline2"))
        assert await client._request("GET", "https://example.test/a", as_text=True) == "line1\nline2"

    @pytest.mark.asyncio
    async def test_429_trips_gate_and_does_not_retry(self, make_client, gate):
        client, session = make_client(FakeResponse(429, headers={"Retry-After": "30"}))

        with pytest.raises(RateLimitedError) as exc_info:
            await client._request("GET", "https://example.test/a")

        assert exc_info.value.retry_after == 30.0
        assert gate.cooldown_remaining == pytest.approx(30.0)
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_404_raises_not_found(self, make_client):
        client, _ = make_client(FakeResponse(404))
        with pytest.raises(NotFoundError):
            await client._request("GET", "https://example.test/missing")

    @pytest.mark.asyncio
    async def test_other_4xx_is_not_retried(self, make_client):
        client, session = make_client(FakeResponse(400, "bad request"))

        with pytest.raises(ProviderError) as exc_info:
            await client._request("GET", "https://example.test/a")

        assert not isinstance(exc_info.value, TransientNetworkError)
        assert exc_info.value.status_code == 400
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_5xx_retries_then_succeeds(self, make_client):
        client, session = make_client(FakeResponse(503, "busy"), FakeResponse(200, "[]"))

        assert await client._request("GET", "https://example.test/a") == []
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_5xx_exhausts_retries(self, make_client):
        client, session = make_client(*(FakeResponse(500, "down") for _ in range(3)))

        with pytest.raises(TransientNetworkError):
            await client._request("GET", "https://example.test/a")
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self, make_client):
        client, session = make_client(
            aiohttp.ClientConnectionError("reset"),
            FakeResponse(200, '{"ok": 1}'),
        )

        assert await client._request("GET", "https://example.test/a") == {"ok": 1}
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_every_attempt_passes_through_gate(self, make_client, fake_clock):
        client, _ = make_client(FakeResponse(502), FakeResponse(200, "{}"))

        await client._request("GET", "https://example.test/a")

        # Second attempt waited out the gate's minimum interval
        assert fake_clock.sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self, make_client):
        client, session = make_client()
        await client.close()
        assert session.closed is False
