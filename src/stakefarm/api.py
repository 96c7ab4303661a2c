"""
stakefarm/api.py

Read-only REST API over a FarmingEngine.

Exposes pool, user, stake and penalty views plus health and Prometheus
metrics endpoints. State changes are not possible through the API.
"""

import json
import logging
import time
import trio
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

from .config import DEFAULT_API_HOST, DEFAULT_API_PORT, VERSION
from .errors import InvalidStakeIndex, PoolNotFound, StakingError
from .metrics import MetricsCollector

if TYPE_CHECKING:
    from .farming import FarmingEngine

logger = logging.getLogger("stakefarm.api")


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes
    path_params: Dict[str, str] = field(default_factory=dict)

    def query_int(self, name: str, default: Optional[int] = None) -> Optional[int]:
        """Integer query parameter; ValueError if present but malformed."""
        values = self.query.get(name, [])
        if not values:
            return default
        return int(values[0])

    def query_flag(self, name: str) -> bool:
        values = self.query.get(name, [])
        return bool(values) and values[0].lower() in ("1", "true", "yes")


@dataclass
class Response:
    """HTTP response representation."""
    status: int
    headers: Dict[str, str]
    body: bytes

    @classmethod
    def json(cls, data: Any, status: int = 200) -> "Response":
        """Create JSON response."""
        body = json.dumps(data, indent=2).encode("utf-8")
        return cls(
            status=status,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    @classmethod
    def text(cls, text: str, status: int = 200, content_type: str = "text/plain") -> "Response":
        """Create text response."""
        return cls(
            status=status,
            headers={"Content-Type": content_type},
            body=text.encode("utf-8"),
        )

    @classmethod
    def error(cls, message: str, status: int = 400) -> "Response":
        """Create error response."""
        return cls.json({"error": message}, status=status)


class FarmingAPI:
    """
    REST API server for stakefarm.

    Usage:
        from stakefarm import FarmingEngine
        from stakefarm.api import FarmingAPI

        api = FarmingAPI(engine, host="0.0.0.0", port=8545)
        trio.run(api.start)

        # API available at http://localhost:8545
    """

    def __init__(
        self,
        engine: "FarmingEngine",
        host: str = DEFAULT_API_HOST,
        port: int = DEFAULT_API_PORT,
        enable_metrics: bool = True,
    ):
        """
        Initialize REST API server.

        Args:
            engine: FarmingEngine to expose
            host: Host to bind to (default: localhost)
            port: Port to listen on
            enable_metrics: Enable Prometheus metrics endpoint
        """
        self.engine = engine
        self.host = host
        self.port = port
        self.enable_metrics = enable_metrics

        self.metrics = MetricsCollector(engine) if enable_metrics else None

        # Server state
        self._running = False
        self._start_time = time.time()

        # Route handlers
        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/status"): self._handle_status,
            ("GET", "/pools"): self._handle_get_pools,
            ("GET", "/pools/{token}"): self._handle_get_pool,
            ("GET", "/pools/{token}/penalty"): self._handle_pool_penalty,
            ("GET", "/users/{address}"): self._handle_get_user,
            ("GET", "/users/{address}/stakes"): self._handle_get_stakes,
            ("GET", "/users/{address}/stakes/{stake_id}/rewards"): self._handle_stake_rewards,
            ("GET", "/users/{address}/referrals"): self._handle_get_referrals,
            ("GET", "/metrics"): self._handle_metrics,
        }

    async def start(self) -> None:
        """Start the API server."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting REST API server on {self.host}:{self.port}")

        try:
            await trio.serve_tcp(
                self._handle_connection,
                self.port,
                host=self.host,
            )
        except Exception as e:
            logger.error(f"API server error: {e}")
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop the API server."""
        self._running = False
        logger.info("REST API server stopped")

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            request = await self._read_request(stream)
            if not request:
                return

            response = await self._route_request(request)
            await self._send_response(stream, response)

        except Exception as e:
            logger.error(f"Connection error: {e}")
            try:
                await self._send_response(stream, Response.error(str(e), status=500))
            except trio.BrokenResourceError:
                pass
        finally:
            await stream.aclose()

    async def _read_request(self, stream: trio.SocketStream) -> Optional[Request]:
        """Read and parse HTTP request."""
        try:
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return None
                data += chunk

            header_end = data.index(b"\r\n\r\n")
            header_data = data[:header_end].decode("utf-8")
            body = data[header_end + 4:]

            lines = header_data.split("\r\n")
            request_line = lines[0].split(" ")
            method = request_line[0]
            path_with_query = request_line[1] if len(request_line) > 1 else "/"

            parsed = urlparse(path_with_query)

            headers = {}
            for line in lines[1:]:
                if ":" in line:
                    key, value = line.split(":", 1)
                    headers[key.strip().lower()] = value.strip()

            content_length = int(headers.get("content-length", 0))
            while len(body) < content_length:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    break
                body += chunk

            return Request(
                method=method,
                path=parsed.path,
                query=parse_qs(parsed.query),
                headers=headers,
                body=body[:content_length] if content_length else body,
            )

        except (UnicodeDecodeError, ValueError) as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        status_text = {
            200: "OK",
            400: "Bad Request",
            404: "Not Found",
            405: "Method Not Allowed",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }.get(response.status, "Unknown")

        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"stakefarm/{VERSION}"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"

        await stream.send_all(header_bytes + response.body)

    async def _route_request(self, request: Request) -> Response:
        """Route request to appropriate handler."""
        handler = self._routes.get((request.method, request.path))
        if handler is None:
            for (method, pattern), candidate in self._routes.items():
                if method != request.method:
                    continue
                match, params = self._match_path(pattern, request.path)
                if match:
                    request.path_params = params
                    handler = candidate
                    break

        if handler is None:
            if any(self._match_path(p, request.path)[0] for (_, p) in self._routes):
                return Response.error("Method Not Allowed", status=405)
            return Response.error("Not Found", status=404)

        try:
            return await handler(request)
        except (PoolNotFound, InvalidStakeIndex) as e:
            return Response.error(e.message, status=404)
        except StakingError as e:
            return Response.error(e.message, status=400)
        except ValueError as e:
            return Response.error(f"Invalid parameter: {e}", status=400)

    def _match_path(self, pattern: str, path: str) -> Tuple[bool, Dict[str, str]]:
        """Match path against pattern with parameters."""
        pattern_parts = pattern.split("/")
        path_parts = path.split("/")

        if len(pattern_parts) != len(path_parts):
            return False, {}

        params = {}
        for p_part, path_part in zip(pattern_parts, path_parts):
            if p_part.startswith("{") and p_part.endswith("}"):
                params[p_part[1:-1]] = path_part
            elif p_part != path_part:
                return False, {}

        return True, params

    def _at(self, request: Request) -> int:
        """Evaluation time: ?at=<unix seconds> or the engine clock."""
        return request.query_int("at", self.engine.now())

    # ========== Route Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        """Handle root endpoint."""
        return Response.json({
            "name": "stakefarm",
            "version": VERSION,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        """Handle health check."""
        is_healthy = not self.engine.paused
        return Response.json({
            "status": "healthy" if is_healthy else "paused",
            "paused": self.engine.paused,
            "block_number": self.engine.world.block_number,
            "uptime_seconds": time.time() - self._start_time,
        }, status=200 if is_healthy else 503)

    async def _handle_status(self, request: Request) -> Response:
        """Handle status endpoint."""
        world = self.engine.world
        now = self.engine.now()
        return Response.json({
            "owner": self.engine.owner,
            "paused": self.engine.paused,
            "now": now,
            "deployment_time": world.deployment_time,
            "pool_end_time": self.engine.pool_end_time(),
            "staking_open": now < self.engine.pool_end_time(),
            "block_number": world.block_number,
            "config": world.config.to_dict(),
            "pools": self.engine.pool_ids(),
        })

    async def _handle_get_pools(self, request: Request) -> Response:
        """Handle list pools endpoint."""
        pools = [self.engine.pools(token).to_dict() for token in self.engine.pool_ids()]
        return Response.json({"count": len(pools), "pools": pools})

    async def _handle_get_pool(self, request: Request) -> Response:
        """Handle single pool endpoint."""
        token = request.path_params.get("token")
        return Response.json(self.engine.pools(token).to_dict())

    async def _handle_pool_penalty(self, request: Request) -> Response:
        """Handle pool penalty endpoint."""
        token = request.path_params.get("token")
        info = self.engine.get_pool_penalty_info(token, at=self._at(request))
        return Response.json({"pool": token, **info.to_dict()})

    async def _handle_get_user(self, request: Request) -> Response:
        """Handle user record endpoint."""
        address = request.path_params.get("address")
        data = self.engine.users(address).to_dict()
        data["referrals_number"] = len(data["referrals"])
        return Response.json(data)

    async def _handle_get_stakes(self, request: Request) -> Response:
        """Handle staking details endpoint (?offset=&limit=)."""
        address = request.path_params.get("address")
        details = self.engine.view_staking_details(
            address,
            offset=request.query_int("offset", 0),
            limit=request.query_int("limit", 0),
        )
        return Response.json({"owner": address, **details.to_dict()})

    async def _handle_stake_rewards(self, request: Request) -> Response:
        """Handle pending rewards endpoint (?apply_penalty=1&at=)."""
        address = request.path_params.get("address")
        stake_id = int(request.path_params.get("stake_id"))
        at = self._at(request)
        apply_penalty = request.query_flag("apply_penalty")

        stake = self.engine.get_stake(address, stake_id)
        rewards = self.engine.get_stake_rewards(address, stake_id, apply_penalty=apply_penalty, at=at)
        pool = self.engine.pools(stake.pool_id)
        return Response.json({
            "owner": address,
            "stake_id": stake_id,
            "pool": stake.pool_id,
            "at": at,
            "apply_penalty": apply_penalty,
            "rewards": dict(zip(pool.reward_tokens, rewards)),
        })

    async def _handle_get_referrals(self, request: Request) -> Response:
        """Handle referrals endpoint."""
        address = request.path_params.get("address")
        referrals = self.engine.get_referrals(address)
        return Response.json({
            "address": address,
            "count": len(referrals),
            "referrals": referrals,
            "is_active": self.engine.is_active_user(address),
        })

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        if not self.metrics:
            return Response.error("Metrics not enabled", status=404)

        return Response.text(
            self.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )
