#!/usr/bin/env python3
"""
Message channels between frontends and the worker.

Two one-way queues: commands go frontend → worker, snapshots and events go
worker → frontend. Nothing else is shared between the threads.
"""

import queue
from dataclasses import dataclass
from typing import List, Optional, Union

from .commands import Command
from .fan import ControllerSnapshot

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised when sending on a closed channel."""


@dataclass(frozen=True)
class CommandApplied:
    """The worker applied a command successfully."""
    description: str


@dataclass(frozen=True)
class WorkerError:
    """A command or poll failed; the worker keeps running."""
    description: str
    error: Exception

    @property
    def message(self) -> str:
        return f"{self.description}: {self.error}"


WorkerEvent = Union[ControllerSnapshot, CommandApplied, WorkerError]


class CommandChannel:
    """
    Frontend → worker queue.

    close() is the only way to stop the worker: it enqueues an end marker
    behind any commands already sent, so those are still applied.
    """

    def __init__(self):
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, command: Command) -> None:
        if self._closed:
            raise ChannelClosed("command channel is closed")
        self._queue.put(command)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    def receive(self, timeout: Optional[float] = None) -> Optional[Command]:
        """
        Wait up to timeout seconds for the next command.

        Returns None on timeout.

        Raises:
            ChannelClosed: the end marker was reached
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            raise ChannelClosed("command channel is closed")
        return item

    def drain(self) -> List[Command]:
        """
        Take every command queued right now without waiting.

        Raises:
            ChannelClosed: the end marker was reached; commands queued
                before it are returned by the earlier drain calls
        """
        commands = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return commands
            if item is _CLOSED:
                # put it back so the caller sees the close after these commands
                self._queue.put(_CLOSED)
                if commands:
                    return commands
                raise ChannelClosed("command channel is closed")
            commands.append(item)


class SnapshotChannel:
    """Worker → frontend queue of snapshots and events."""

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[WorkerEvent]" = queue.Queue(maxsize=maxsize)

    def publish(self, event: WorkerEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # a slow frontend only needs the newest state
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(event)

    def receive(self, timeout: Optional[float] = None) -> Optional[WorkerEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[WorkerEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
