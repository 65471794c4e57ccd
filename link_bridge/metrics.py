"""
Health and metrics HTTP endpoint for LinkBridge monitoring.

Provides lightweight HTTP endpoints:
- GET /health - JSON health check
- GET /metrics - Prometheus-compatible text format metrics
"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from link_bridge.server import LinkBridgeServer

logger = logging.getLogger(__name__)


async def handle_http_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    server: "LinkBridgeServer",
) -> None:
    """Handle a single HTTP request."""
    try:
        request_line = await reader.readline()
        if not request_line:
            return

        parts = request_line.decode("utf-8").strip().split()
        if len(parts) < 2:
            return

        method, path = parts[0], parts[1]

        # Headers are not needed for these endpoints
        while True:
            line = await reader.readline()
            if not line or line == b"\r\n":
                break

        if method == "GET" and path == "/health":
            _write_response(writer, "200 OK", "application/json", render_health(server))
        elif method == "GET" and path == "/metrics":
            _write_response(writer, "200 OK", "text/plain; version=0.0.4", render_metrics(server))
        else:
            _write_response(writer, "404 Not Found", "text/plain", "Not Found")

    except Exception as e:
        logger.error(f"Error handling metrics request: {e}")
    finally:
        try:
            await writer.drain()
            writer.close()
            await writer.wait_closed()
        except Exception:
            pass


def _write_response(writer: asyncio.StreamWriter, status: str, content_type: str, body: str) -> None:
    data = body.encode("utf-8")
    head = f"HTTP/1.1 {status}\r\nContent-Type: {content_type}\r\nContent-Length: {len(data)}\r\n\r\n"
    writer.write(head.encode("utf-8") + data)


def render_health(server: "LinkBridgeServer") -> str:
    status = server.current_status()
    clock = server.clock_state()
    health_data = {
        "status": "ok" if status.is_running else "stopped",
        "uptime_seconds": round(server.uptime, 2),
        "running": status.is_running,
        "connected_clients": status.client_count,
        "local_address": status.local_address,
        "connections_total": server.connections_total,
        "tempo": clock.tempo,
        "is_playing": clock.is_playing,
        "num_peers": clock.num_peers,
    }
    return json.dumps(health_data, indent=2)


def render_metrics(server: "LinkBridgeServer") -> str:
    clock = server.clock_state()
    dispatcher = server.dispatcher

    # Format: metric_name{label="value"} value
    lines = [
        "# HELP linkbridge_uptime_seconds Server uptime in seconds",
        "# TYPE linkbridge_uptime_seconds gauge",
        f"linkbridge_uptime_seconds {server.uptime:.2f}",
        "",
        "# HELP linkbridge_connected_clients Number of currently connected clients",
        "# TYPE linkbridge_connected_clients gauge",
        f"linkbridge_connected_clients {server.client_count}",
        "",
        "# HELP linkbridge_connections_total Total client connections since start",
        "# TYPE linkbridge_connections_total counter",
        f"linkbridge_connections_total {server.connections_total}",
        "",
        "# HELP linkbridge_handshake_failures_total Connections that never became ready",
        "# TYPE linkbridge_handshake_failures_total counter",
        f"linkbridge_handshake_failures_total {server.handshake_failures}",
        "",
        "# HELP linkbridge_broadcasts_total Broadcast passes dispatched",
        "# TYPE linkbridge_broadcasts_total counter",
        f"linkbridge_broadcasts_total {dispatcher.broadcasts_sent}",
        "",
        "# HELP linkbridge_send_failures_total Per-connection send failures",
        "# TYPE linkbridge_send_failures_total counter",
        f"linkbridge_send_failures_total {dispatcher.send_failures}",
        "",
        "# HELP linkbridge_messages_dropped_total Messages dropped because they could not be encoded",
        "# TYPE linkbridge_messages_dropped_total counter",
        f"linkbridge_messages_dropped_total {dispatcher.messages_dropped}",
        "",
        "# HELP linkbridge_tempo_bpm Shared session tempo",
        "# TYPE linkbridge_tempo_bpm gauge",
        f"linkbridge_tempo_bpm {clock.tempo:.2f}",
        "",
        "# HELP linkbridge_link_peers Ableton Link peers in the session",
        "# TYPE linkbridge_link_peers gauge",
        f"linkbridge_link_peers {clock.num_peers}",
        "",
    ]
    return "\n".join(lines)


async def start_metrics_server(
    server: "LinkBridgeServer",
    port: int,
    host: str = "0.0.0.0",
) -> asyncio.AbstractServer:
    """Start the metrics HTTP server.

    Args:
        server: LinkBridgeServer instance to expose metrics for
        port: Port to listen on
        host: Host to bind to (default: 0.0.0.0)

    Returns:
        asyncio.Server instance
    """

    async def client_handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        await handle_http_request(reader, writer, server)

    metrics_server = await asyncio.start_server(client_handler, host, port)
    logger.info(f"Metrics server: http://localhost:{port}/health, /metrics")
    return metrics_server
