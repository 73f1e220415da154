#!/usr/bin/env python3
"""
Worker poll loop.

Owns the controller and is the only code that writes to it. Every cycle it
applies queued commands, rediscovers the fans, puts back any held duty the
firmware has reset, and publishes the snapshot.
"""

import logging
import threading
import time
from typing import List, Optional, Sequence

from .backends.base import FanController
from .channels import ChannelClosed, CommandApplied, CommandChannel, SnapshotChannel, WorkerError
from .commands import Command
from .config import ConfigManager
from .errors import DeviceUnavailable, FanControlError
from .fan import ControllerSnapshot, HeldOverrides

IDLE = "IDLE"
POLLING = "POLLING"
APPLYING = "APPLYING"
STOPPED = "STOPPED"


class FanWorker:
    """
    Drives one controller on a fixed cadence.

    State machine:
    - IDLE: created, loop not started.
    - POLLING: discovering, reconciling holds, waiting for the next cycle.
    - APPLYING: executing commands received from a frontend.
    - STOPPED: the command channel was closed and the loop has exited.

    Commands always run before the discovery of the same cycle, so a fresh
    user request is never overwritten by a stale read.
    """

    def __init__(self, controller: FanController, commands: CommandChannel,
                 snapshots: SnapshotChannel, config: ConfigManager = None,
                 interval: Optional[float] = None):
        """Initialize the worker with its controller and channels."""
        self.controller = controller
        self.commands = commands
        self.snapshots = snapshots
        self.config = config or ConfigManager()
        self.interval = interval if interval is not None else self.config.poll_interval
        self.held = HeldOverrides()
        self.state = IDLE
        self.cycles = 0
        self._thread: Optional[threading.Thread] = None
        self._reported_empty = False

    def start(self) -> threading.Thread:
        """Run the loop on a dedicated thread."""
        self._thread = threading.Thread(target=self.run, name="fan-worker", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        """Close the command channel and wait for the loop to finish."""
        self.commands.close()
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Poll until the command channel is closed."""
        logging.info("Worker started (%s backend, every %.1fs)", self.controller.name, self.interval)
        self.state = POLLING
        next_cycle = time.monotonic()
        try:
            while True:
                commands = self._wait_for_commands(next_cycle - time.monotonic())
                self.tick(commands)
                next_cycle = time.monotonic() + self.interval
        except ChannelClosed:
            logging.info("Command channel closed, worker exiting")
        except Exception as exc:
            logging.critical("Worker crashed", exc_info=True)
            self.snapshots.publish(WorkerError("worker", exc))
            raise
        finally:
            self.state = STOPPED

    def _wait_for_commands(self, timeout: float) -> List[Command]:
        """Block until a command arrives or the cycle is due."""
        first = self.commands.receive(timeout=max(0.0, timeout)) if timeout > 0 else None
        pending = [first] if first is not None else []
        try:
            pending.extend(self.commands.drain())
        except ChannelClosed:
            # finish what we already took; the close is seen next cycle
            if not pending:
                raise
        return pending

    def tick(self, commands: Sequence[Command] = ()) -> Optional[ControllerSnapshot]:
        """
        Run one cycle: apply, rediscover, reconcile, publish.

        Returns the published snapshot, or None when discovery failed.
        """
        self.cycles += 1
        if commands:
            self.state = APPLYING
            for command in commands:
                self.apply(command)
        self.state = POLLING

        try:
            snapshot = self.controller.snapshot()
        except FanControlError as exc:
            logging.warning("discover failed: %s", exc)
            self.snapshots.publish(WorkerError("discover", exc))
            return None

        if not snapshot.fans and not self._reported_empty:
            self._reported_empty = True
            logging.warning("No fans detected by %s backend", self.controller.name)
            self.snapshots.publish(WorkerError("discover", DeviceUnavailable()))

        snapshot = self.reconcile(snapshot)
        self.snapshots.publish(snapshot)
        return snapshot

    def apply(self, command: Command) -> bool:
        """Execute one command; failures are reported, never fatal."""
        description = command.describe()
        logging.info("user command: %s", description)
        try:
            command.execute(self.controller, self.held)
        except (FanControlError, ValueError) as exc:
            logging.warning("%s failed: %s", description, exc)
            self.snapshots.publish(WorkerError(description, exc))
            return False
        self.snapshots.publish(CommandApplied(description))
        return True

    def reconcile(self, snapshot: ControllerSnapshot) -> ControllerSnapshot:
        """Reissue every held duty the firmware no longer reports."""
        reapplied = []
        for fan_id, duty in self.held.items():
            fan = snapshot.fans.get(fan_id)
            if fan is None:
                logging.warning("held fan %s missing from discovery", fan_id)
                continue
            if fan.duty == duty:
                continue
            logging.debug("re-applying held duty: %s=%d (firmware reports %s)", fan_id, duty, fan.duty)
            try:
                self.controller.set_duty(fan_id, duty)
            except FanControlError as exc:
                logging.warning("re-apply %s=%d failed: %s", fan_id, duty, exc)
                self.snapshots.publish(WorkerError(f"re-apply {fan_id}", exc))
                continue
            fan.duty = duty
            reapplied.append(fan_id)
        snapshot.reapplied = tuple(reapplied)
        return snapshot
