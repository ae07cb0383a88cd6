"""USI engine supervisor using an asyncio subprocess."""

import asyncio
import logging
import os
import subprocess
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from info_throttler import InfoThrottler, THROTTLE_WINDOW
from line_assembler import LineAssembler
from usi_protocol import ConfigValue, ReadinessState, UsiStateMachine

logger = logging.getLogger("usi_engine")

STDOUT = 1
STDERR = 2

ERROR_KEYWORDS = ("error", "failed", "cannot open")

EXIT_HINTS = (
    "Is the evaluation function file (e.g. nn.bin) next to the engine?",
    "Is the engine build compatible with this CPU?",
)


class EngineError(Exception):
    """Base class for engine supervision failures."""


class EngineNotFound(EngineError):
    """The configured engine executable does not exist or is not executable."""

    def __init__(self, path: str):
        super().__init__(f"Engine not found: {path}")
        self.path = path


@dataclass(frozen=True)
class EngineConfig:
    """Where the engine lives and which USI options to set after usiok."""

    path: str
    options: Mapping[str, ConfigValue] = field(default_factory=dict)

    def __post_init__(self):
        resolved = os.path.abspath(os.path.expanduser(self.path))
        object.__setattr__(self, "path", resolved)
        object.__setattr__(self, "options", dict(self.options))

    @property
    def working_dir(self) -> str:
        return os.path.dirname(self.path)

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


@dataclass
class EngineSession:
    """Live state of one engine process. Owned by UsiEngine."""

    machine: UsiStateMachine
    throttler: InfoThrottler
    stdout: LineAssembler = field(default_factory=LineAssembler)
    stderr: LineAssembler = field(default_factory=LineAssembler)
    transport: asyncio.SubprocessTransport | None = None


class EngineProcessProtocol(asyncio.SubprocessProtocol):
    """Routes pipe events of one engine process back to its supervisor."""

    def __init__(self, engine: "UsiEngine", session: EngineSession):
        self.engine = engine
        self.session = session

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.session.transport = transport  # type: ignore[assignment]

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        if fd == STDOUT:
            for line in self.session.stdout.feed(data):
                self.engine._line_received(self.session, line)
        elif fd == STDERR:
            for line in self.session.stderr.feed(data):
                self.engine._error_line_received(line)

    def pipe_connection_lost(self, fd: int, exc: Exception | None) -> None:
        # last stderr message before a crash often lacks a newline
        if fd == STDERR:
            line = self.session.stderr.flush()
            if line:
                self.engine._error_line_received(line)

    def process_exited(self) -> None:
        self.engine._process_exited(self.session)


class UsiEngine:
    """Owns at most one engine subprocess and its USI session.

    Evaluation lines are throttled and passed to ``on_info``. All methods
    are meant to be called from the event loop thread.
    """

    def __init__(
        self,
        config: EngineConfig,
        on_info: Callable[[str], None],
        throttle_window: float = THROTTLE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.on_info = on_info
        self.throttle_window = throttle_window
        self._clock = clock
        self.session: EngineSession | None = None
        self._idle_state = ReadinessState.IDLE

    @property
    def state(self) -> ReadinessState:
        if self.session is None:
            return self._idle_state
        return self.session.machine.state

    @property
    def running(self) -> bool:
        return self.session is not None

    # --- Lifecycle ---

    async def start(self) -> None:
        """Launch the engine and send the USI handshake.

        Any engine already owned is stopped first.

        Raises:
            EngineNotFound: If the executable is missing or not executable.
        """
        path = self.config.path
        if not (os.path.isfile(path) and os.access(path, os.X_OK)):
            logger.error("Engine not found: %s", path)
            raise EngineNotFound(path)

        if self.session is not None:
            self.stop()

        session = EngineSession(
            machine=UsiStateMachine(self.send, self.config.options),
            throttler=InfoThrottler(self.on_info, self.throttle_window, self._clock),
        )
        session.machine.on_evaluation = session.throttler.observe

        logger.info("Launching engine: %s", self.config.name)
        self.session = session
        loop = asyncio.get_running_loop()
        try:
            await loop.subprocess_exec(
                lambda: EngineProcessProtocol(self, session),
                path,
                cwd=self.config.working_dir,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            self.session = None
            logger.error("Could not launch engine %s: %s", path, e)
            raise EngineError(f"Could not launch engine: {e}") from e
        if self.session is session:
            session.machine.begin_handshake()

    def stop(self) -> None:
        """Send quit, terminate the process and forget the session."""
        session = self.session
        if session is None:
            return
        self.send("quit")
        self.session = None
        session.machine.terminate()
        self._idle_state = ReadinessState.TERMINATED
        if session.transport is not None:
            try:
                session.transport.terminate()
            except ProcessLookupError:
                pass
            session.transport.close()

    # --- Commands ---

    def send(self, command: str) -> None:
        """Write one command line to the engine. No-op without an engine."""
        session = self.session
        if session is None or session.transport is None:
            return
        stdin = session.transport.get_pipe_transport(0)
        if stdin is None or stdin.is_closing():
            logger.debug("stdin closed, dropping command: %s", command)
            return
        logger.debug("<< %s", command)
        stdin.write(command.encode("utf-8") + b"\n")

    def request_analysis(self, sfen: str) -> bool:
        """Forward an analysis request. Returns False if it was dropped."""
        if self.session is None:
            logger.debug("No engine running, dropping analysis request")
            return False
        accepted = self.session.machine.request_analysis(sfen)
        if accepted:
            logger.info("Analysis started: %s...", sfen[:20])
        return accepted

    def stop_analysis(self) -> bool:
        if self.session is None:
            return False
        stopped = self.session.machine.stop_analysis()
        if stopped:
            logger.info("Analysis stopped")
        return stopped

    # --- Process events ---

    def _line_received(self, session: EngineSession, line: str) -> None:
        if session is not self.session:
            return
        logger.debug(">> %s", line)
        session.machine.line_received(line)

    def _error_line_received(self, line: str) -> None:
        lowered = line.lower()
        if any(keyword in lowered for keyword in ERROR_KEYWORDS):
            logger.warning("Engine error: %s", line.strip())

    def _process_exited(self, session: EngineSession) -> None:
        if session is not self.session:
            # already stopped on purpose
            return
        code = session.transport.get_returncode() if session.transport else None
        self.session = None
        session.machine.terminate()
        self._idle_state = ReadinessState.TERMINATED
        logger.warning("Engine exited (exit code: %s)", code)
        for hint in EXIT_HINTS:
            logger.warning("  -> %s", hint)
