"""End-to-end tests: a real server, real event streams, real HTTP calls."""

import asyncio
from collections.abc import Callable

import aiohttp
import pytest

from tests.stubs import FORECAST, PARIS, StubWeatherService
from weathergate.client import Client, ClientConfig
from weathergate.error import ErrorCode, GatewayError
from weathergate.protocol.wire import EndpointFrame, EventDecoder, parse_frame
from weathergate.server import Server, ServerConfig

SECRET = "s3cret-token"  # noqa: S105


def _config(**kwargs) -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=0, ping_interval=0.05, **kwargs)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


async def _read_endpoint(response: aiohttp.ClientResponse) -> str:
    decoder = EventDecoder()
    async for raw_line in response.content:
        event = decoder.feed_line(raw_line.decode("utf-8").rstrip("\n"))
        if event is not None:
            frame = parse_frame(*event)
            assert isinstance(frame, EndpointFrame)
            return frame.url
    msg = "stream ended before the endpoint frame"
    raise AssertionError(msg)


@pytest.fixture
async def server(stub_service: StubWeatherService):
    """Start a server on a free port."""
    server_instance = Server(_config(), stub_service)
    await server_instance.start()

    yield server_instance

    await server_instance.stop()


@pytest.fixture
def base_url(server: Server) -> str:
    return f"http://127.0.0.1:{server.port}"


@pytest.fixture
async def http():
    async with aiohttp.ClientSession() as session:
        yield session


class TestSessionLifecycle:
    """Tests for the full open, call, close cycle."""

    @pytest.mark.asyncio
    async def test_search_then_disconnect(self, server: Server, base_url: str, http: aiohttp.ClientSession) -> None:
        """Test a call on a live session, then NOT_FOUND once the stream is gone."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            session_id = client.session_id
            assert client.endpoint == f"/messages?session_id={session_id}"
            assert len(server.registry) == 1

            assert await client.search_location("Paris") == [PARIS]

        await _wait_until(lambda: len(server.registry) == 0)

        async with http.post(
            f"{base_url}/messages",
            params={"session_id": session_id},
            json={"id": "2", "operation": "search_location", "arguments": {"city": "Paris"}},
        ) as response:
            assert response.status == 404
            body = await response.json()
        assert body["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_disconnect_noticed_without_ping(self, stub_service: StubWeatherService) -> None:
        """Test that closing the stream ends the session long before a keep-alive ping."""
        config = ServerConfig(host="127.0.0.1", port=0)
        assert config.ping_interval >= 15.0

        async with Server(config, stub_service) as server:
            base_url = f"http://127.0.0.1:{server.port}"
            async with aiohttp.ClientSession() as http:
                response = await http.get(f"{base_url}/sse")
                endpoint = await _read_endpoint(response)
                assert len(server.registry) == 1

                response.close()
                await _wait_until(lambda: len(server.registry) == 0, timeout=1.0)

                async with http.post(
                    f"{base_url}{endpoint}",
                    json={"id": "1", "operation": "search_location", "arguments": {"city": "Paris"}},
                ) as reply:
                    assert reply.status == 404

        assert stub_service.calls == []

    @pytest.mark.asyncio
    async def test_forecast(self, server: Server, base_url: str) -> None:
        """Test the forecast operation over the wire."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            assert await client.get_complete_forecast(48.85, 2.35) == FORECAST

    @pytest.mark.asyncio
    async def test_list_operations(self, server: Server, base_url: str) -> None:
        """Test the operation catalog over the wire."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            catalog = await client.list_operations()

        assert [entry["name"] for entry in catalog] == ["search_location", "get_complete_forecast"]

    @pytest.mark.asyncio
    async def test_invalid_arguments_framed(self, server: Server, base_url: str) -> None:
        """Test that validation failures arrive as error frames on the stream."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.call("get_complete_forecast", {"latitude": 123, "longitude": 0})

        assert exc_info.value.code == ErrorCode.BAD_REQUEST
        assert "latitude" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_sessions_isolated(self, server: Server, base_url: str) -> None:
        """Test concurrent clients each receive only their own results."""
        clients = [Client(ClientConfig(url=base_url, timeout=5.0)) for _ in range(3)]
        for client in clients:
            await client.connect()
        try:
            assert len({client.session_id for client in clients}) == 3
            results = await asyncio.gather(
                *(client.search_location(f"City {index}") for index, client in enumerate(clients))
            )
            assert results == [[PARIS]] * 3
        finally:
            for client in clients:
                await client.close()

    @pytest.mark.asyncio
    async def test_pipelined_calls(self, server: Server, base_url: str) -> None:
        """Test many calls in flight on one session."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            results = await asyncio.gather(*(client.search_location("Paris") for _ in range(10)))

        assert results == [[PARIS]] * 10


class TestMessageEndpoint:
    """Tests for synchronous rejections on the call endpoint."""

    @pytest.mark.asyncio
    async def test_unregistered_session(self, base_url: str, http: aiohttp.ClientSession) -> None:
        """Test a well-formed but unknown session id."""
        async with http.post(
            f"{base_url}/messages", params={"session_id": "1-unknown"}, json={"operation": "search_location"}
        ) as response:
            assert response.status == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "?session_id=", "?session_id=" + "x" * 200])
    async def test_malformed_session_id(self, base_url: str, http: aiohttp.ClientSession, query: str) -> None:
        """Test missing, empty and oversized references."""
        async with http.post(f"{base_url}/messages{query}", json={"operation": "search_location"}) as response:
            assert response.status == 400
            body = await response.json()
        assert body["error"]["code"] == "bad_request"

    @pytest.mark.asyncio
    async def test_body_not_json(self, base_url: str, http: aiohttp.ClientSession) -> None:
        """Test a body that does not decode."""
        async with http.post(
            f"{base_url}/messages", params={"session_id": "1-any"}, data=b"city=Paris"
        ) as response:
            assert response.status == 400

    @pytest.mark.asyncio
    async def test_envelope_without_operation(
        self, server: Server, base_url: str, http: aiohttp.ClientSession
    ) -> None:
        """Test a live session with a malformed call envelope."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            async with http.post(
                f"{base_url}/messages", params={"session_id": client.session_id}, json={"arguments": {}}
            ) as response:
                assert response.status == 400

    @pytest.mark.asyncio
    async def test_accepted(self, server: Server, base_url: str, http: aiohttp.ClientSession) -> None:
        """Test the acknowledgement body for an accepted call."""
        async with Client(ClientConfig(url=base_url, timeout=5.0)) as client:
            async with http.post(
                f"{base_url}{client.endpoint}",
                json={"id": "x", "operation": "search_location", "arguments": {"city": "Paris"}},
            ) as response:
                assert response.status == 202
                assert await response.json() == {"status": "accepted"}


class TestStream:
    """Tests for the event stream endpoint."""

    @pytest.mark.asyncio
    async def test_first_frame_is_endpoint(self, server: Server, base_url: str, http: aiohttp.ClientSession) -> None:
        """Test the stream headers and its first frame."""
        async with http.get(f"{base_url}/sse") as response:
            assert response.status == 200
            assert response.headers["Content-Type"].startswith("text/event-stream")
            endpoint = await _read_endpoint(response)

        assert endpoint.startswith("/messages?session_id=")

    @pytest.mark.asyncio
    async def test_shutdown_closes_streams(self, stub_service: StubWeatherService) -> None:
        """Test that stopping the server ends every live stream."""
        server = Server(_config(), stub_service)
        await server.start()
        try:
            async with aiohttp.ClientSession() as http:
                async with http.get(f"http://127.0.0.1:{server.port}/sse") as response:
                    await _read_endpoint(response)
                    assert len(server.registry) == 1

                    await server.stop()

                    # The stream reaches EOF instead of hanging
                    await asyncio.wait_for(response.content.read(), timeout=5.0)
            assert len(server.registry) == 0
        finally:
            await server.stop()


class TestHealth:
    """Tests for the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, base_url: str, http: aiohttp.ClientSession) -> None:
        async with http.get(f"{base_url}/health") as response:
            assert response.status == 200
            assert await response.json() == {"status": "ok"}


class TestCors:
    """Tests for cross-origin headers."""

    @pytest.mark.asyncio
    async def test_headers_on_plain_response(self, base_url: str, http: aiohttp.ClientSession) -> None:
        async with http.get(f"{base_url}/health") as response:
            assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_headers_on_stream(self, server: Server, base_url: str, http: aiohttp.ClientSession) -> None:
        async with http.get(f"{base_url}/sse") as response:
            assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_preflight(self, base_url: str, http: aiohttp.ClientSession) -> None:
        """Test that OPTIONS is answered without a session."""
        async with http.options(
            f"{base_url}/messages",
            headers={"Origin": "http://example.test", "Access-Control-Request-Method": "POST"},
        ) as response:
            assert response.status == 200
            assert "POST" in response.headers["Access-Control-Allow-Methods"]

    @pytest.mark.asyncio
    async def test_disabled(self, stub_service: StubWeatherService) -> None:
        async with Server(_config(enable_cors=False), stub_service) as server:
            async with aiohttp.ClientSession() as http:
                async with http.get(f"http://127.0.0.1:{server.port}/health") as response:
                    assert "Access-Control-Allow-Origin" not in response.headers


class TestAuth:
    """Tests for the shared-secret check."""

    @pytest.mark.asyncio
    async def test_required_without_secret_fails_closed(self, stub_service: StubWeatherService) -> None:
        """Test that a missing secret rejects every guarded request."""
        async with Server(_config(require_auth=True), stub_service) as server:
            base_url = f"http://127.0.0.1:{server.port}"
            async with aiohttp.ClientSession() as http:
                async with http.get(f"{base_url}/sse") as response:
                    assert response.status == 500
                    body = await response.json()
                assert body["error"]["code"] == "misconfigured"

                async with http.post(
                    f"{base_url}/messages", params={"session_id": "1-any"}, json={"operation": "search_location"}
                ) as response:
                    assert response.status == 500

                # Even the configured header with some value is refused
                async with http.get(f"{base_url}/sse", headers={"x-weathergate-token": "anything"}) as response:
                    assert response.status == 500

            assert len(server.registry) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"x-weathergate-token": "wrong"}, {"x-other": SECRET}])
    async def test_bad_token(self, stub_service: StubWeatherService, headers: dict[str, str]) -> None:
        async with Server(_config(auth_secret=SECRET), stub_service) as server:
            async with aiohttp.ClientSession() as http:
                async with http.get(f"http://127.0.0.1:{server.port}/sse", headers=headers) as response:
                    assert response.status == 401
                    body = await response.json()
            assert body["error"]["code"] == "unauthorized"
            assert len(server.registry) == 0

    @pytest.mark.asyncio
    async def test_good_token(self, stub_service: StubWeatherService) -> None:
        async with Server(_config(require_auth=True, auth_secret=SECRET), stub_service) as server:
            config = ClientConfig(url=f"http://127.0.0.1:{server.port}", timeout=5.0, auth_secret=SECRET)
            async with Client(config) as client:
                assert await client.search_location("Paris") == [PARIS]

    @pytest.mark.asyncio
    async def test_client_without_token(self, stub_service: StubWeatherService) -> None:
        """Test that the client surfaces the rejection."""
        async with Server(_config(auth_secret=SECRET), stub_service) as server:
            with pytest.raises(GatewayError) as exc_info:
                await Client(ClientConfig(url=f"http://127.0.0.1:{server.port}", timeout=5.0)).connect()

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_health_exempt(self, stub_service: StubWeatherService) -> None:
        async with Server(_config(require_auth=True), stub_service) as server:
            async with aiohttp.ClientSession() as http:
                async with http.get(f"http://127.0.0.1:{server.port}/health") as response:
                    assert response.status == 200

    @pytest.mark.asyncio
    async def test_preflight_exempt(self, stub_service: StubWeatherService) -> None:
        async with Server(_config(auth_secret=SECRET), stub_service) as server:
            async with aiohttp.ClientSession() as http:
                async with http.options(f"http://127.0.0.1:{server.port}/messages") as response:
                    assert response.status == 200
                    assert "x-weathergate-token" in response.headers["Access-Control-Allow-Headers"]
