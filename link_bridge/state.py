"""
Shared clock/transport state broadcast to every client.

ClockState is an immutable value; SharedState holds the current value behind
a lock so producers on any thread (the Link poller, a GUI) can replace it and
readers always get one consistent snapshot.
"""

import math
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional

DEFAULT_TEMPO = 120.0
DEFAULT_QUANTUM = 4


@dataclass(frozen=True)
class ClockState:
    """Tempo, play state and beat position of the shared session."""

    tempo: float = DEFAULT_TEMPO  # BPM
    is_playing: bool = False
    beat: float = 0.0
    phase: float = 0.0  # Position within the bar, 0 <= phase < quantum
    quantum: int = DEFAULT_QUANTUM  # Bar length in beats
    num_peers: int = 0
    next_bar_delay: float = 0.0  # Seconds until the next bar boundary

    def to_dict(self) -> dict:
        return asdict(self)

    def to_wire(self, num_clients: int) -> dict:
        """Map to the camelCase field names clients expect."""
        return {
            "tempo": float(self.tempo),
            "isPlaying": bool(self.is_playing),
            "beat": float(self.beat),
            "phase": float(self.phase),
            "quantum": int(self.quantum),
            "numPeers": int(self.num_peers),
            "numClients": int(num_clients),
            "nextBar0Delay": float(self.next_bar_delay),
        }


STATE_FIELDS = frozenset(f.name for f in fields(ClockState))


def compute_next_bar_delay(phase: float, quantum: int, tempo: float) -> float:
    """Seconds from the current phase to the start of the next bar."""
    if tempo <= 0 or quantum <= 0:
        return 0.0
    beats_left = (quantum - phase) % quantum
    return beats_left * 60.0 / tempo


# Fields that move the next bar boundary
_BAR_FIELDS = frozenset({"tempo", "phase", "quantum"})


def _coerce_float(name: str, value, minimum: Optional[float] = None, exclusive: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite, got {value!r}")
    if minimum is not None and (value <= minimum if exclusive else value < minimum):
        raise ValueError(f"{name} must be {'>' if exclusive else '>='} {minimum:g}, got {value!r}")
    return value


def _coerce_int(name: str, value, minimum: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value!r}")
    return value


def validate_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Check and normalize ClockState field values.

    Returns the coerced values. Raises ValueError for unknown names, values
    of the wrong type and non-finite numbers.
    """
    unknown = set(changes) - STATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown state fields: {', '.join(sorted(unknown))}")

    clean = {}
    for name, value in changes.items():
        if name == "tempo":
            clean[name] = _coerce_float(name, value, minimum=0.0, exclusive=True)
        elif name in ("phase", "next_bar_delay"):
            clean[name] = _coerce_float(name, value, minimum=0.0)
        elif name == "beat":
            clean[name] = _coerce_float(name, value)
        elif name == "quantum":
            clean[name] = _coerce_int(name, value, minimum=1)
        elif name == "num_peers":
            clean[name] = _coerce_int(name, value, minimum=0)
        elif name == "is_playing":
            if not isinstance(value, bool):
                raise ValueError(f"is_playing must be a bool, got {value!r}")
            clean[name] = value
    return clean


class SharedState:
    """Process-wide ClockState, replaced atomically under a lock."""

    def __init__(self, initial: Optional[ClockState] = None):
        self._lock = threading.Lock()
        if initial is not None:
            validate_changes(initial.to_dict())
        self._value = initial if initial is not None else ClockState()

    def snapshot(self) -> ClockState:
        with self._lock:
            return self._value

    def update(self, **changes) -> ClockState:
        """Apply field changes and return the new snapshot.

        Raises ValueError for names that are not ClockState fields or values
        that cannot be broadcast; the current value is left untouched. When
        tempo, phase or quantum change without an explicit next_bar_delay,
        the delay is recomputed from the new values.
        """
        clean = validate_changes(changes)
        with self._lock:
            value = replace(self._value, **clean)
            if "next_bar_delay" not in clean and clean.keys() & _BAR_FIELDS:
                value = replace(
                    value, next_bar_delay=compute_next_bar_delay(value.phase, value.quantum, value.tempo)
                )
            self._value = value
            return self._value

    def reset(self) -> ClockState:
        with self._lock:
            self._value = ClockState()
            return self._value
