"""USI handshake and analysis state machine.

The machine is transport agnostic: it is given a ``send`` callable for
commands and is fed complete engine output lines. Commands issued:

    usi                          handshake
    setoption name K value V     once per configured option
    isready                      readiness probe
    usinewgame                   after readyok
    stop / position sfen X / go infinite    per analysis request
"""

import enum
import logging
from collections.abc import Callable, Mapping

logger = logging.getLogger("usi_protocol")

HANDSHAKE_ACK = "usiok"
READY_ACK = "readyok"
INFO_TOKEN = "info"
SCORE_TOKEN = "score"

ConfigValue = str | int


class ReadinessState(enum.Enum):
    IDLE = "idle"
    STARTED = "started"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    CONFIGURING_OPTIONS = "configuring_options"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    ANALYZING = "analyzing"
    TERMINATED = "terminated"


ACCEPTING_STATES = frozenset({ReadinessState.READY, ReadinessState.ANALYZING})


def is_evaluation_line(line: str) -> bool:
    """Return True for 'info ... score ...' search progress lines."""
    tokens = line.strip().split()
    return bool(tokens) and tokens[0] == INFO_TOKEN and SCORE_TOKEN in tokens


def setoption_command(name: str, value: ConfigValue) -> str:
    """Format 'setoption name <name> value <value>'."""
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"


def position_command(sfen: str) -> str:
    return f"position sfen {sfen}"


class UsiStateMachine:
    """Drives one engine session from handshake to repeated analysis.

    Requests that arrive before the engine is ready, or after it has
    terminated, are dropped without queuing.
    """

    def __init__(
        self,
        send: Callable[[str], None],
        options: Mapping[str, ConfigValue] | None = None,
        on_evaluation: Callable[[str], None] | None = None,
    ):
        self._send = send
        self.options = dict(options or {})
        self.on_evaluation = on_evaluation
        self.state = ReadinessState.IDLE

    @property
    def accepting_requests(self) -> bool:
        return self.state in ACCEPTING_STATES

    # --- Lifecycle ---

    def begin_handshake(self) -> None:
        """Send 'usi' for a freshly launched process."""
        self.state = ReadinessState.STARTED
        self._send("usi")
        self.state = ReadinessState.AWAITING_HANDSHAKE

    def terminate(self) -> None:
        self.state = ReadinessState.TERMINATED

    # --- Engine output ---

    def line_received(self, line: str) -> None:
        """Dispatch one complete engine line.

        Unrecognized lines (id, option, bestmove, free text) are ignored.
        """
        trimmed = line.strip()
        if trimmed == HANDSHAKE_ACK:
            self._handshake_acknowledged()
        elif trimmed == READY_ACK:
            self._ready_acknowledged()
        elif is_evaluation_line(trimmed):
            if self.on_evaluation is not None:
                self.on_evaluation(trimmed)

    def _handshake_acknowledged(self) -> None:
        if self.state != ReadinessState.AWAITING_HANDSHAKE:
            logger.debug("Ignoring %s in state %s", HANDSHAKE_ACK, self.state.value)
            return
        logger.info("Engine acknowledged USI handshake (usiok)")
        self.state = ReadinessState.CONFIGURING_OPTIONS
        for name, value in self.options.items():
            self._send(setoption_command(name, value))
        self._send("isready")
        self.state = ReadinessState.AWAITING_READY

    def _ready_acknowledged(self) -> None:
        if self.state != ReadinessState.AWAITING_READY:
            logger.debug("Ignoring %s in state %s", READY_ACK, self.state.value)
            return
        self._send("usinewgame")
        self.state = ReadinessState.READY
        logger.info("Engine ready (readyok)")

    # --- Remote requests ---

    def request_analysis(self, sfen: str) -> bool:
        """Restart the search on a new position.

        Always sends 'stop' first so two searches never overlap.

        Returns:
            False if the request was dropped.
        """
        if not self.accepting_requests:
            logger.debug("Dropping analysis request in state %s", self.state.value)
            return False
        if not sfen:
            logger.debug("Dropping analysis request without a position")
            return False
        self._send("stop")
        self._send(position_command(sfen))
        self._send("go infinite")
        self.state = ReadinessState.ANALYZING
        return True

    def stop_analysis(self) -> bool:
        """Ask the engine to stop searching.

        USI has no acknowledgement for 'stop', so the machine returns to READY
        immediately.
        """
        if self.state != ReadinessState.ANALYZING:
            logger.debug("Ignoring stop request in state %s", self.state.value)
            return False
        self._send("stop")
        self.state = ReadinessState.READY
        return True
