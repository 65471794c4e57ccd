"""
Ableton Link clock source.

Polls a Link session and feeds tempo, play state, beat position and peer
count into the server's shared state. A broadcast goes out when something
clients care about changes (tempo, play state, peers, or a new beat);
between those the state is refreshed silently so a hello sent to a new
client still carries the current position.
"""

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any, Dict, Optional

try:
    import aalink

    HAS_LINK = True
except ImportError:
    HAS_LINK = False

from link_bridge.state import DEFAULT_QUANTUM, DEFAULT_TEMPO, compute_next_bar_delay

if TYPE_CHECKING:
    from link_bridge.server import LinkBridgeServer

logger = logging.getLogger(__name__)

TEMPO_EPSILON = 0.01  # BPM


class LinkClockSource:
    """Bridges an aalink.Link session into a LinkBridgeServer."""

    def __init__(self, server: "LinkBridgeServer", link: Any, poll_hz: float = 60.0):
        self.server = server
        self.link = link
        self.poll_interval = 1.0 / max(1.0, poll_hz)
        self._last_sent: Optional[Dict[str, Any]] = None

    @classmethod
    def create(
        cls,
        server: "LinkBridgeServer",
        tempo: float = DEFAULT_TEMPO,
        quantum: int = DEFAULT_QUANTUM,
        poll_hz: float = 60.0,
    ) -> Optional["LinkClockSource"]:
        """Join a Link session. Returns None if aalink is unavailable."""
        if not HAS_LINK:
            logger.warning("aalink not installed; Ableton Link disabled. Run: pip install aalink")
            return None
        try:
            link = aalink.Link(tempo, asyncio.get_running_loop())
            link.quantum = quantum
            link.start_stop_sync_enabled = True
            link.enabled = True
        except Exception as e:
            logger.warning(f"Failed to initialize Ableton Link: {e}")
            return None
        logger.info("Ableton Link enabled (waiting for peers)")
        return cls(server, link, poll_hz=poll_hz)

    def read(self) -> Dict[str, Any]:
        """Capture the Link session as ClockState field values."""
        tempo = float(self.link.tempo)
        quantum = int(self.link.quantum)
        phase = float(self.link.phase)
        return {
            "tempo": tempo,
            "is_playing": bool(self.link.playing),
            "beat": float(self.link.beat),
            "phase": phase,
            "quantum": quantum,
            "num_peers": int(self.link.num_peers),
            "next_bar_delay": compute_next_bar_delay(phase, quantum, tempo),
        }

    def is_significant(self, fields: Dict[str, Any]) -> bool:
        """True if fields differ from the last broadcast in a way clients see."""
        last = self._last_sent
        if last is None:
            return True
        if abs(fields["tempo"] - last["tempo"]) > TEMPO_EPSILON:
            return True
        if fields["is_playing"] != last["is_playing"]:
            return True
        if fields["num_peers"] != last["num_peers"] or fields["quantum"] != last["quantum"]:
            return True
        return math.floor(fields["beat"]) != math.floor(last["beat"])

    async def poll_once(self) -> bool:
        """Read Link once. Returns True if a broadcast was sent."""
        fields = self.read()
        if not self.is_significant(fields):
            self.server.state.update(**fields)
            return False

        previous = self._last_sent
        self._last_sent = fields
        if previous is None or fields["num_peers"] != previous["num_peers"]:
            logger.info(f"[LINK] Peers: {fields['num_peers']}, Tempo: {fields['tempo']:.1f} BPM")
        await self.server.update_state(**fields)
        return True

    async def run(self) -> None:
        """Poll Link until cancelled."""
        try:
            while True:
                try:
                    await self.poll_once()
                    await asyncio.sleep(self.poll_interval)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug(f"[LINK] Error in sync loop: {e}")
                    await asyncio.sleep(1.0)
        finally:
            self.link.enabled = False
