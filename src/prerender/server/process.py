"""Application server lifecycle: spawn, readiness detection, and teardown."""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Iterator, Mapping, NoReturn, Sequence

from prerender.errors import ReadinessTimeoutError, SpawnError
from prerender.logging_utils import log_server_line

LOGGER = logging.getLogger(__name__)

LinePredicate = Callable[[str], bool]
DiagnosticSink = Callable[[str, str], None]

STDERR_TAIL_LINES = 200
_EOF = None
POSIX = os.name == "posix"


def marker_predicate(marker: str) -> LinePredicate:
    """Readiness predicate matching any line that contains ``marker``."""

    return lambda line: marker in line


@dataclass(slots=True)
class ServerHandle:
    """A spawned application server. Do not reuse after ``stop``."""

    process: subprocess.Popen[str]
    command: list[str]
    stdout_lines: queue.Queue[str | None] = field(default_factory=queue.Queue)
    stderr_lines: deque[str] = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))
    ready_event: threading.Event = field(default_factory=threading.Event)
    readers: list[threading.Thread] = field(default_factory=list)
    signals_sent: int = 0
    stopped: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_ready(self) -> bool:
        return self.ready_event.is_set()

    @property
    def stderr_tail(self) -> list[str]:
        return list(self.stderr_lines)


class ProcessController:
    """Owns application server processes from spawn until stop."""

    def __init__(
        self,
        *,
        sink: DiagnosticSink | None = None,
        stop_timeout: float = 10.0,
    ) -> None:
        self.sink = sink or log_server_line
        self.stop_timeout = stop_timeout

    def start(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ServerHandle:
        """Spawn the server without waiting for it to become ready."""

        argv = list(command)
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=dict(env) if env is not None else None,
                cwd=cwd,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=POSIX,
            )
        except OSError as exc:
            raise SpawnError(f"could not start {argv}: {exc}") from exc

        handle = ServerHandle(process=process, command=argv)
        handle.readers = [
            self._start_reader(handle, process.stdout, "stdout"),
            self._start_reader(handle, process.stderr, "stderr"),
        ]
        LOGGER.info("server.started pid=%s argv=%s", process.pid, argv)
        return handle

    def _start_reader(self, handle: ServerHandle, stream: IO[str] | None, name: str) -> threading.Thread:
        thread = threading.Thread(
            target=self._pump,
            args=(handle, stream, name),
            name=f"server-{name}-{handle.pid}",
            daemon=True,
        )
        thread.start()
        return thread

    def _pump(self, handle: ServerHandle, stream: IO[str] | None, name: str) -> None:
        if stream is None:
            return
        try:
            for raw_line in iter(stream.readline, ""):
                line = raw_line.rstrip("\r\n")
                self.sink(name, line)
                if name == "stderr":
                    handle.stderr_lines.append(line)
                elif not handle.ready_event.is_set():
                    handle.stdout_lines.put(line)
        except ValueError:
            # Stream closed underneath us by stop().
            pass
        finally:
            if name == "stdout":
                handle.stdout_lines.put(_EOF)

    def await_ready(
        self,
        handle: ServerHandle,
        ready: str | LinePredicate,
        timeout: float,
    ) -> None:
        """Block until a stdout line satisfies ``ready`` or ``timeout`` elapses.

        On timeout the process is left running; the caller still owns the stop.
        """

        predicate = marker_predicate(ready) if isinstance(ready, str) else ready
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadinessTimeoutError(timeout)
            try:
                line = handle.stdout_lines.get(timeout=remaining)
            except queue.Empty as exc:
                raise ReadinessTimeoutError(timeout) from exc
            if line is _EOF:
                self._raise_early_exit(handle)
            if predicate(line):
                handle.ready_event.set()
                LOGGER.info("server.ready pid=%s line=%r", handle.pid, line)
                return

    def _raise_early_exit(self, handle: ServerHandle) -> NoReturn:
        try:
            returncode = handle.process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            returncode = None
        # stderr reader may still be draining
        handle.readers[1].join(timeout=1.0)
        tail = "\n".join(handle.stderr_tail[-20:])
        raise SpawnError(
            f"server exited with code {returncode} before becoming ready"
            + (f"; stderr tail:\n{tail}" if tail else "")
        )

    def _signal(self, process: subprocess.Popen[str], sig: int) -> bool:
        """Deliver ``sig`` to the server's whole process group.

        Wrappers such as ``npm start`` or ``sh -c`` leave the real server as a
        grandchild, so signalling only the direct child is not enough.
        Returns False when no process of the group is left.
        """

        if not POSIX:
            if sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
            return True
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return False
        return True

    def _join_readers(self, handle: ServerHandle) -> bool:
        deadline = time.monotonic() + self.stop_timeout
        for reader in handle.readers:
            reader.join(timeout=max(0.0, deadline - time.monotonic()))
        return not any(reader.is_alive() for reader in handle.readers)

    def stop(self, handle: ServerHandle) -> None:
        """Terminate the server and its process group. Safe to call more than once."""

        with handle.lock:
            if handle.stopped:
                return
            handle.stopped = True
            process = handle.process
            if process.poll() is None:
                self._signal(process, signal.SIGTERM)
                handle.signals_sent += 1
                try:
                    process.wait(timeout=self.stop_timeout)
                except subprocess.TimeoutExpired:
                    LOGGER.warning("server.kill pid=%s reason=terminate_timeout", handle.pid)
                    self._signal(process, signal.SIGKILL)
                    process.wait()

            readers_done = self._join_readers(handle)
            if not readers_done and POSIX:
                # Orphaned group members still hold the output pipes open.
                LOGGER.warning("server.kill_group pid=%s reason=pipes_held_open", handle.pid)
                self._signal(process, signal.SIGKILL)
                readers_done = self._join_readers(handle)

            if readers_done:
                for stream in (process.stdout, process.stderr):
                    if stream is not None:
                        stream.close()
            else:
                LOGGER.warning("server.readers_alive pid=%s streams_left_open=true", handle.pid)
        LOGGER.info("server.stopped pid=%s returncode=%s", handle.pid, process.returncode)

    @contextmanager
    def running(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> Iterator[ServerHandle]:
        """Start a server and guarantee ``stop`` on every exit from the block."""

        handle = self.start(command, env=env, cwd=cwd)
        try:
            yield handle
        finally:
            self.stop(handle)
