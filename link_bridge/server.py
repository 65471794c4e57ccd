"""
LinkBridge Server - local WebSocket hub for shared clock state.

Accepts any number of client connections, sends each new client a hello
snapshot of the shared clock, and broadcasts state changes to every
connected client.

Architecture:
    Link session / producers --update_state()--> LinkBridgeServer
                                                   |
                        Client 1 <--- broadcast ---+
                        Client 2 <--- broadcast ---+
                        Client N <--- broadcast ---+
"""

import asyncio
import concurrent.futures
import logging
import time
from typing import Any, Callable, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve

from link_bridge.config import BridgeConfig
from link_bridge.connection import GOING_AWAY, CommandHandler, ConnectionHandle, ignore_command
from link_bridge.dispatcher import BroadcastDispatcher
from link_bridge.errors import BindError
from link_bridge.netinfo import format_local_address, resolve_host_address
from link_bridge.registry import ConnectionRegistry
from link_bridge.state import ClockState, SharedState
from link_bridge.status import NO_ADDRESS, ServerStatus, StatusObserver, StatusPublisher

logger = logging.getLogger(__name__)


class LinkBridgeServer:
    """Listener, connection lifecycle and broadcast entry points."""

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        registry: Optional[ConnectionRegistry] = None,
        state: Optional[SharedState] = None,
        command_handler: CommandHandler = ignore_command,
        address_resolver: Callable[[str], str] = resolve_host_address,
    ):
        self.config = config or BridgeConfig()
        self.registry = registry or ConnectionRegistry()
        self.state = state or SharedState()
        self.dispatcher = BroadcastDispatcher(self.registry, self.state)
        self.status = StatusPublisher()
        self._command_handler = command_handler
        self._address_resolver = address_resolver

        self._server: Optional[Server] = None
        self._closing_server: Optional[Server] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopped: Optional[asyncio.Event] = None
        self._bound_port: Optional[int] = None
        self._accepting = False

        # Optional collaborators started by run()
        self._metrics_server: Optional[asyncio.AbstractServer] = None
        self._link_task: Optional[asyncio.Task] = None

        # Stats
        self._start_time = time.time()
        self.connections_total = 0
        self.handshake_failures = 0

    # ------------------------------------------------------------------
    # Observable status
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def client_count(self) -> int:
        return self.registry.size()

    @property
    def local_address(self) -> str:
        return self.status.status.local_address

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (differs from config when started on port 0)."""
        return self._bound_port

    @property
    def uptime(self) -> float:
        return time.time() - self._start_time

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        return self.status.subscribe(observer)

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    async def start(self, port: Optional[int] = None, host: Optional[str] = None) -> None:
        """Bind the WebSocket listener and begin accepting.

        Raises BindError if the port is invalid or cannot be bound. Calling
        start() while already running logs a warning and does nothing.
        """
        if self._server is not None:
            logger.warning(f"LinkBridge already running on port {self._bound_port}; start() ignored")
            return

        port = self.config.port if port is None else port
        host = self.config.host if host is None else host
        if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
            self.status.update(is_running=False)
            raise BindError(f"Invalid port: {port!r}", host=host, port=port)

        self._accepting = True
        try:
            server = await serve(
                self._handle_connection,
                host,
                port,
                max_size=self.config.max_message_size,
            )
        except OSError as e:
            self._accepting = False
            self.status.update(is_running=False)
            logger.error(f"LinkBridge failed to bind {host}:{port}: {e}")
            raise BindError(f"Cannot bind {host}:{port}: {e.strerror or e}", host=host, port=port) from e

        self._server = server
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        self._start_time = time.time()
        self._bound_port = server.sockets[0].getsockname()[1]

        address = format_local_address(self._address_resolver(host), self._bound_port)
        self.status.update(is_running=True, local_address=address, client_count=self.registry.size())
        logger.info(f"LinkBridge WebSocket server: {address}", extra={"port": self._bound_port})

    def stop(self) -> None:
        """Stop accepting and close every connection.

        Safe to call from any thread or from a signal handler. Returns
        immediately; use wait_closed() to wait for the listener to finish.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._stop_now()
        elif not loop.is_running():
            if running is None:
                logger.warning("LinkBridge event loop is not running; stopping inline")
                self._stop_now()
            else:
                logger.warning("LinkBridge event loop is not running; stop deferred until it resumes")
                loop.call_soon_threadsafe(self._stop_now)
        else:
            loop.call_soon_threadsafe(self._stop_now)

    def _stop_now(self) -> None:
        server = self._server
        if server is None:
            return
        self._server = None
        self._closing_server = server
        self._accepting = False

        # Stop accepting; connections mid-handshake are closed by websockets
        server.close(close_connections=True)

        closed = 0
        for handle in self.registry.snapshot():
            handle.close(GOING_AWAY, "LinkBridge shutting down")
            closed += 1
        self.registry.clear()

        self.status.update(is_running=False, client_count=0, local_address=NO_ADDRESS)
        if self._stopped is not None:
            self._stopped.set()
        logger.info(f"LinkBridge stopped ({closed} connection(s) closed)")

    async def wait_closed(self) -> None:
        """Wait for a stopped listener to finish, bounded by stop_grace_seconds."""
        server = self._closing_server
        if server is None:
            return
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=self.config.stop_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Clients did not close within {self.config.stop_grace_seconds:.1f}s; abandoning them"
            )
        self._closing_server = None

    async def serve_forever(self) -> None:
        """Block until stop() is called."""
        if self._stopped is None:
            raise RuntimeError("LinkBridge server has not been started")
        await self._stopped.wait()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """websockets connection handler: one call per accepted client."""
        connection_id = self.registry.next_id()
        self.connections_total += 1
        handle = ConnectionHandle(connection_id, websocket, self.registry, on_change=self._on_membership_change)

        if not self._accepting:
            # Accepted while stop() was running
            handle.close(GOING_AWAY, "LinkBridge shutting down")
            return

        if not await handle.open(self.dispatcher.encoded_hello):
            self.handshake_failures += 1
            return

        logger.info(
            f"Client {connection_id} connected from {handle.remote_address}. Total: {self.registry.size()}",
            extra={
                "connection_id": connection_id,
                "remote_address": handle.remote_address,
                "client_count": self.registry.size(),
            },
        )
        await handle.receive_loop(self._command_handler)
        logger.info(
            f"Client {connection_id} disconnected. Total: {self.registry.size()}",
            extra={"connection_id": connection_id, "client_count": self.registry.size()},
        )

    def _on_membership_change(self, handle: ConnectionHandle) -> None:
        self.status.update(client_count=self.registry.size())

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send message to every connected client. Returns the delivered count."""
        return await self.dispatcher.broadcast(message)

    def broadcast_threadsafe(self, message: Dict[str, Any]) -> concurrent.futures.Future:
        """Submit a broadcast from a thread that is not running the server loop."""
        if self._loop is None or self._server is None:
            raise RuntimeError("LinkBridge server is not running")
        return asyncio.run_coroutine_threadsafe(self.broadcast(message), self._loop)

    async def update_state(self, **changes) -> int:
        """Apply ClockState changes and broadcast the full state to everyone."""
        self.state.update(**changes)
        return await self.dispatcher.broadcast(self.dispatcher.state_message())

    def clock_state(self) -> ClockState:
        return self.state.snapshot()

    def current_status(self) -> ServerStatus:
        return self.status.status

    # ------------------------------------------------------------------
    # Process entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start the server plus optional metrics and Link, run until stop()."""
        await self.start()

        if self.config.metrics_port is not None:
            from link_bridge.metrics import start_metrics_server

            self._metrics_server = await start_metrics_server(self, self.config.metrics_port, self.config.host)

        if self.config.enable_link:
            from link_bridge.link_sync import LinkClockSource

            source = LinkClockSource.create(self, poll_hz=self.config.link_poll_hz)
            if source is not None:
                self._link_task = asyncio.create_task(source.run())
                logger.info("Ableton Link sync loop started")

        logger.info("LinkBridge ready. Waiting for client connections...")
        try:
            await self.serve_forever()
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Release everything run() started."""
        self.stop()

        if self._link_task and not self._link_task.done():
            self._link_task.cancel()
            try:
                await self._link_task
            except asyncio.CancelledError:
                pass
        self._link_task = None

        if self._metrics_server is not None:
            self._metrics_server.close()
            await self._metrics_server.wait_closed()
            self._metrics_server = None

        await self.wait_closed()
