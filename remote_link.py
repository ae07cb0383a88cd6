"""Socket.IO link to the analysis server."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import socketio

logger = logging.getLogger("remote_link")

DEFAULT_SERVER_URL = "https://shogistack-server.onrender.com"
RECONNECT_DELAY = 5  # seconds

REQUEST_ANALYSIS = "request_analysis"
STOP_ANALYSIS = "stop_analysis"
ANALYSIS_UPDATE = "connector_analysis_update"


@dataclass(frozen=True)
class ConnectionConfig:
    url: str
    token: str

    @property
    def auth(self) -> dict[str, str]:
        return {"type": "connector", "token": self.token}


class RemoteLink:
    """Keeps a connector session open and relays its events.

    The client library's own reconnection is disabled; run() retries with a
    fixed delay, forever.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        on_connect: Callable[[], Awaitable[None]],
        on_request_analysis: Callable[[str], object],
        on_stop_analysis: Callable[[], object],
        reconnect_delay: float = RECONNECT_DELAY,
    ):
        self.config = config
        self.on_connect = on_connect
        self.on_request_analysis = on_request_analysis
        self.on_stop_analysis = on_stop_analysis
        self.reconnect_delay = reconnect_delay
        self._closed = False

        self.sio = socketio.AsyncClient(reconnection=False)
        self.sio.on("connect", self._handle_connect)
        self.sio.on("connect_error", self._handle_connect_error)
        self.sio.on("disconnect", self._handle_disconnect)
        self.sio.on(REQUEST_ANALYSIS, self._handle_request_analysis)
        self.sio.on(STOP_ANALYSIS, self._handle_stop_analysis)

    @property
    def connected(self) -> bool:
        return bool(self.sio.connected)

    async def run(self) -> None:
        """Connect and stay connected until close() is called."""
        while not self._closed:
            logger.info("Connecting to %s ...", self.config.url)
            try:
                await self.sio.connect(self.config.url, auth=self.config.auth)
            except socketio.exceptions.ConnectionError as e:
                logger.error("Connection failed: %s", e)
            else:
                await self.sio.wait()
            if self._closed:
                break
            logger.info("Reconnecting in %s seconds...", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def close(self) -> None:
        self._closed = True
        if self.sio.connected:
            await self.sio.disconnect()

    def send_update(self, info: str) -> None:
        """Emit one evaluation line without waiting. Skipped while offline."""
        if not self.sio.connected:
            return
        self.sio.start_background_task(self._emit_update, info)

    async def _emit_update(self, info: str) -> None:
        try:
            await self.sio.emit(ANALYSIS_UPDATE, {"info": info})
        except socketio.exceptions.SocketIOError as e:
            logger.debug("Dropped analysis update: %s", e)

    # --- Socket.IO handlers ---

    async def _handle_connect(self) -> None:
        logger.info("Connected (sid: %s)", self.sio.sid)
        await self.on_connect()

    async def _handle_connect_error(self, data=None) -> None:
        # run() reports the failure itself
        logger.debug("Connection error: %s", data)

    async def _handle_disconnect(self, *args) -> None:
        logger.warning("Disconnected from server")

    async def _handle_request_analysis(self, data=None) -> None:
        sfen = data.get("sfen") if isinstance(data, dict) else None
        if not isinstance(sfen, str) or not sfen:
            logger.debug("Ignoring malformed analysis request: %r", data)
            return
        self.on_request_analysis(sfen)

    async def _handle_stop_analysis(self, *args) -> None:
        self.on_stop_analysis()
