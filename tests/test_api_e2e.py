"""
stakefarm/tests/test_api_e2e.py

End-to-end tests for REST API with actual HTTP requests.

Run with: pytest tests/test_api_e2e.py -v --timeout=120
Skip with: pytest tests/ -v --ignore=tests/test_api_e2e.py
"""

import json
import socket
from typing import Optional, Tuple

import pytest
import trio

from stakefarm.api import FarmingAPI
from stakefarm.config import ENGINE_ACCOUNT
from stakefarm.farming import FarmingEngine
from stakefarm.tokens import InMemoryToken

from conftest import ALICE, BOB, DAY, E18, FARM_RATE, OWNER, FakeClock, configure_pool


def get_free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def http_request(
    host: str,
    port: int,
    method: str,
    path: str,
    body: Optional[bytes] = None,
) -> Tuple[int, dict, bytes]:
    """Make an HTTP request and return (status, headers, body)."""
    lines = [f"{method} {path} HTTP/1.1", f"Host: {host}:{port}"]
    if body:
        lines.append(f"Content-Length: {len(body)}")
        lines.append("Content-Type: application/json")
    lines.append("")
    request = "\r\n".join(lines).encode() + b"\r\n" + (body or b"")

    stream = await trio.open_tcp_stream(host, port)
    try:
        await stream.send_all(request)

        data = b""
        while b"\r\n\r\n" not in data:
            chunk = await stream.receive_some(4096)
            if not chunk:
                break
            data += chunk

        header_end = data.index(b"\r\n\r\n")
        header_lines = data[:header_end].decode("utf-8").split("\r\n")
        response_body = data[header_end + 4:]

        status_code = int(header_lines[0].split(" ", 2)[1])
        response_headers = {}
        for line in header_lines[1:]:
            if ": " in line:
                key, value = line.split(": ", 1)
                response_headers[key.lower()] = value

        content_length = int(response_headers.get("content-length", 0))
        while len(response_body) < content_length:
            chunk = await stream.receive_some(4096)
            if not chunk:
                break
            response_body += chunk

        return status_code, response_headers, response_body[:content_length]

    finally:
        await stream.aclose()


def create_engine() -> FarmingEngine:
    """Engine with a FARM/GOLD pool and one ALICE stake referred by BOB, one day in."""
    clock = FakeClock()
    tokens = {"FARM": InMemoryToken("FARM"), "GOLD": InMemoryToken("GOLD")}
    engine = FarmingEngine.create(OWNER, tokens=tokens, clock=clock)
    for token in tokens.values():
        token.mint(ENGINE_ACCOUNT, 10 ** 9 * E18)

    configure_pool(engine)
    tokens["FARM"].mint(ALICE, 1000 * E18)
    engine.stake(ALICE, "FARM", 1000 * E18, referrer=BOB)
    clock.advance(DAY)
    return engine


async def fetch(path: str, method: str = "GET") -> Tuple[int, dict, bytes]:
    """Serve a fresh engine on a free port and issue one request against it."""
    port = get_free_port()
    api = FarmingAPI(create_engine(), host="127.0.0.1", port=port)
    async with trio.open_nursery() as nursery:
        nursery.start_soon(api.start)
        await trio.sleep(0.2)

        result = await http_request("127.0.0.1", port, method, path)

        nursery.cancel_scope.cancel()

    return result


class TestAPIEndToEnd:
    """End-to-end tests for REST API."""

    @pytest.mark.timeout(30)
    def test_health_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch("/health")

            assert status == 200
            assert headers["content-type"] == "application/json"
            assert headers["server"] == "stakefarm/0.1.0"
            assert json.loads(body)["status"] == "healthy"

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_pool_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch("/pools/FARM")

            assert status == 200
            data = json.loads(body)
            assert data["total_staked"] == 1000 * E18
            assert data["reward_tokens"] == ["FARM", "GOLD"]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_rewards_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch(f"/users/{ALICE}/stakes/0/rewards")

            assert status == 200
            assert json.loads(body)["rewards"]["FARM"] == DAY * FARM_RATE

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_referrals_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch(f"/users/{BOB}/referrals")

            assert status == 200
            assert json.loads(body)["referrals"] == [ALICE]

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_metrics_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch("/metrics")

            assert status == 200
            assert headers["content-type"].startswith("text/plain")
            assert b"stakefarm_active_stakes 1" in body

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_404_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch("/nonexistent")

            assert status == 404
            assert json.loads(body)["error"] == "Not Found"

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_405_endpoint_e2e(self):
        async def run_test():
            status, headers, body = await fetch("/pools", method="DELETE")

            assert status == 405

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_concurrent_requests_e2e(self):
        async def run_test():
            port = get_free_port()
            api = FarmingAPI(create_engine(), host="127.0.0.1", port=port)
            statuses = []

            async def one(path):
                status, _, _ = await http_request("127.0.0.1", port, "GET", path)
                statuses.append(status)

            async with trio.open_nursery() as nursery:
                nursery.start_soon(api.start)
                await trio.sleep(0.2)

                async with trio.open_nursery() as clients:
                    for path in ("/health", "/status", "/pools", f"/users/{ALICE}", "/metrics"):
                        clients.start_soon(one, path)

                nursery.cancel_scope.cancel()

            assert statuses == [200] * 5

        trio.run(run_test)
