"""Toolchain process execution.

This module handles:
- Describing toolchain invocations (``Task``)
- Launching them and streaming their lifecycle as task events
- Enforcing timeouts and killing processes that are abandoned

A launched task yields ``Launch`` first, then ``StandardOutput`` and
``StandardError`` events as data arrives, and finally exactly one
``Success`` carrying the ``TaskResult``. Failures are raised instead of
yielded: a non-zero exit raises ``TaskError`` and an expired timeout
raises ``TaskTimeoutError``, and a set cancel event raises
``BuildCancelledError``. Closing the event generator early kills the
process.

Every task runs in its own session so that a timeout, cancellation or an
abandoned stream kills the whole process group, including the helper
processes xcodebuild and shells start.
"""

from __future__ import annotations

import logging
import os
import queue
import shlex
import signal
import subprocess
import threading
import time
from collections.abc import Generator, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import IO, Generic, TypeVar, Union

from fatbuild.errors import BuildCancelledError, BuildError, TaskError, TaskTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

READ_CHUNK_SIZE = 64 * 1024

# Seconds between cancel event checks while a task is silent
CANCEL_POLL_INTERVAL = 0.1

# Seconds to wait for output readers once the process group is gone
READER_JOIN_TIMEOUT = 2.0


@dataclass(frozen=True)
class Task:
    """A process to launch.

    Attributes:
        launch_path: Program to execute.
        arguments: Arguments passed to the program.
        working_directory: Optional working directory.
        environment: Optional environment overrides.
    """

    launch_path: str
    arguments: tuple[str, ...] = ()
    working_directory: Path | None = None
    environment: Mapping[str, str] | None = field(default=None, compare=False)

    @property
    def command(self) -> list[str]:
        return [self.launch_path, *self.arguments]

    def __str__(self) -> str:
        return shlex.join(self.command)


@dataclass(frozen=True)
class Launch:
    """The task has been launched."""

    task: Task


@dataclass(frozen=True)
class StandardOutput:
    """A chunk of the task's standard output."""

    data: bytes


@dataclass(frozen=True)
class StandardError:
    """A chunk of the task's standard error."""

    data: bytes


@dataclass(frozen=True)
class Success(Generic[T]):
    """Terminal event carrying the task's value."""

    value: T


OutputEvent = Union[Launch, StandardOutput, StandardError]
TaskEvent = Union[Launch, StandardOutput, StandardError, Success[T]]


@dataclass(frozen=True)
class TaskResult:
    """Outcome of a successful process run."""

    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


def _pump(stream: IO[bytes], wrap: type, events: queue.Queue) -> None:
    """Read a pipe until EOF, forwarding chunks to the event queue."""
    try:
        for chunk in iter(partial(stream.read1, READ_CHUNK_SIZE), b""):  # type: ignore[attr-defined]
            events.put(wrap(chunk))
    except (OSError, ValueError):
        # Pipe torn down while the process group was being killed
        pass
    finally:
        events.put(None)


def _kill_process_group(process: subprocess.Popen) -> None:
    """Kill a task's process group, or the process alone if the group is gone."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except OSError:
        process.kill()


class Toolchain:
    """Launches toolchain processes.

    Attributes:
        xcrun_path: Path to ``xcrun``; every Apple tool is run through it.
    """

    def __init__(self, xcrun_path: str = "/usr/bin/xcrun") -> None:
        self.xcrun_path = xcrun_path

    def xcrun(self, *arguments: str, working_directory: Path | None = None) -> Task:
        """Describe an ``xcrun <tool> ...`` invocation."""
        return Task(self.xcrun_path, tuple(arguments), working_directory)

    def with_cancel_event(self, cancel_event: threading.Event | None) -> Toolchain:
        """Return a view of this toolchain whose tasks stop when the event is set."""
        if cancel_event is None:
            return self
        return CancellableToolchain(self, cancel_event)

    def launch(
        self,
        task: Task,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[TaskEvent[TaskResult]]:
        """Launch a task and stream its events.

        Args:
            task: Task to launch.
            timeout: Optional timeout in seconds for the whole run.
            cancel_event: Optional event; setting it kills the task.

        Yields:
            Launch, then output events, then one Success(TaskResult).

        Raises:
            TaskError: If the process cannot start or exits non-zero.
            TaskTimeoutError: If the timeout expires; the process is killed.
            BuildCancelledError: If the cancel event is set; the process is
                killed.
        """
        logger.info("Executing: %s", task)
        if task.working_directory is not None:
            logger.debug("Working directory: %s", task.working_directory)

        env: dict[str, str] | None = None
        if task.environment:
            env = dict(os.environ)
            env.update(task.environment)

        try:
            process = subprocess.Popen(
                task.command,
                cwd=task.working_directory,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise TaskError(task, None, f"Failed to execute: {e}") from e

        events: queue.Queue = queue.Queue()
        readers = [
            threading.Thread(target=_pump, args=(process.stdout, StandardOutput, events), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr, StandardError, events), daemon=True),
        ]
        for reader in readers:
            reader.start()

        deadline = None if timeout is None else time.monotonic() + timeout
        stdout = bytearray()
        stderr = bytearray()
        finished = False

        def wait_time() -> float | None:
            """Seconds to block before the deadline or the next cancel check."""
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Cancelling: %s", task)
                raise BuildCancelledError()
            if deadline is None:
                left = None
            else:
                left = deadline - time.monotonic()
                if left <= 0:
                    raise TaskTimeoutError(task, timeout or 0)
            if cancel_event is None:
                return left
            return CANCEL_POLL_INTERVAL if left is None else min(left, CANCEL_POLL_INTERVAL)

        try:
            yield Launch(task)

            open_streams = len(readers)
            while open_streams:
                try:
                    event = events.get(timeout=wait_time())
                except queue.Empty:
                    continue
                if event is None:
                    open_streams -= 1
                    continue
                if isinstance(event, StandardOutput):
                    stdout += event.data
                else:
                    stderr += event.data
                yield event

            while True:
                try:
                    exit_code = process.wait(timeout=wait_time())
                    break
                except subprocess.TimeoutExpired:
                    continue
            finished = True
        finally:
            if not finished:
                logger.warning("Terminating unfinished process: %s", task)
                _kill_process_group(process)
                process.wait()
            # Readers see EOF once every process holding the pipes is gone
            for reader in readers:
                reader.join(timeout=READER_JOIN_TIMEOUT)
            for reader, stream in zip(readers, (process.stdout, process.stderr)):
                if reader.is_alive():
                    logger.warning("Output of %s is still open, leaving it to its reader", task)
                elif stream is not None:
                    stream.close()

        if exit_code != 0:
            logger.error("Command failed with exit code %d: %s", exit_code, task)
            raise TaskError(task, exit_code, stderr.decode("utf-8", errors="replace"))

        yield Success(TaskResult(exit_code, bytes(stdout), bytes(stderr)))

    def run(
        self,
        task: Task,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TaskResult:
        """Launch a task and wait for its result, discarding live output."""
        events = self.launch(task, timeout=timeout, cancel_event=cancel_event)
        try:
            for event in events:
                if isinstance(event, Success):
                    return event.value
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()
        raise BuildError(f"{task} finished without a result")


class CancellableToolchain(Toolchain):
    """A toolchain whose tasks are killed once a cancel event is set.

    Launches are delegated to the wrapped toolchain with the event attached,
    so components handed this view need no cancellation logic of their own.

    Args:
        toolchain: Toolchain that launches the tasks.
        cancel_event: Event cancelling every task launched through this view.
    """

    def __init__(self, toolchain: Toolchain, cancel_event: threading.Event) -> None:
        super().__init__(toolchain.xcrun_path)
        self.toolchain = toolchain
        self.cancel_event = cancel_event

    def xcrun(self, *arguments: str, working_directory: Path | None = None) -> Task:
        return self.toolchain.xcrun(*arguments, working_directory=working_directory)

    def launch(
        self,
        task: Task,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[TaskEvent[TaskResult]]:
        return self.toolchain.launch(
            task, timeout=timeout, cancel_event=cancel_event or self.cancel_event
        )


def forward_output(events: Iterable[TaskEvent[T]]) -> Generator[OutputEvent, None, T]:
    """Re-yield output events of a task stream and return its success value.

    Use as ``value = yield from forward_output(events)``.
    """
    try:
        for event in events:
            if isinstance(event, Success):
                return event.value
            yield event
    finally:
        close = getattr(events, "close", None)
        if close is not None:
            close()
    raise BuildError("Task event stream ended without a result")


__all__ = [
    "CancellableToolchain",
    "Launch",
    "OutputEvent",
    "StandardError",
    "StandardOutput",
    "Success",
    "Task",
    "TaskEvent",
    "TaskResult",
    "Toolchain",
    "forward_output",
]
