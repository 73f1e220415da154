#!/usr/bin/env python3
"""
Graphical fan control interface (Tkinter).

The controller is created and driven on the worker thread; the window only
sends commands and renders whatever the worker publishes.
"""

import logging
import threading
import tkinter as tk
from tkinter import ttk
from typing import Dict, Optional

from .backends import create_controller
from .channels import CommandApplied, CommandChannel, SnapshotChannel, WorkerError
from .commands import RefreshCommand, SetCurveCommand, SetDutyCommand, SetFullSpeedCommand
from .config import ConfigManager
from .errors import FanControlError
from .fan import ControllerSnapshot, FanCurve, build_curve_from_points, parse_point
from .worker import FanWorker

UI_REFRESH_MS = 200


def _worker_main(config: ConfigManager, commands: CommandChannel, snapshots: SnapshotChannel) -> None:
    try:
        controller = create_controller(config)
    except FanControlError as exc:
        logging.error("Failed to initialize fan controller: %s", exc)
        snapshots.publish(WorkerError("initialize fan controller", exc))
        return
    FanWorker(controller, commands, snapshots, config=config).run()


class FanControlApp(ttk.Frame):
    """Main window: one card per fan plus a curve editor."""

    def __init__(self, master, commands: CommandChannel, snapshots: SnapshotChannel):
        super().__init__(master, padding=10)
        self.commands = commands
        self.snapshots = snapshots
        self.duty_vars: Dict[str, tk.IntVar] = {}
        self.curve_vars: Dict[tuple, tk.StringVar] = {}
        self.curves: Dict[tuple, FanCurve] = {}
        self.fan_rows: Optional[Dict[str, dict]] = None

        self.status = tk.StringVar(value="Discovering fans...")
        self.full_speed = tk.BooleanVar(value=False)

        self.banner = ttk.Label(self, textvariable=self.status, foreground="#444")
        self.banner.pack(fill="x")
        ttk.Checkbutton(self, text="Full speed", variable=self.full_speed,
                        command=self.on_full_speed).pack(anchor="w", pady=(6, 0))
        self.fans_frame = ttk.Frame(self)
        self.fans_frame.pack(fill="x", pady=6)
        self.curves_frame = ttk.LabelFrame(self, text="Fan curves (TEMP:RPM ...)", padding=6)
        self.curves_frame.pack(fill="both", expand=True)
        self.pack(fill="both", expand=True)

        self.after(UI_REFRESH_MS, self.poll_worker)

    def poll_worker(self) -> None:
        for event in self.snapshots.drain():
            if isinstance(event, ControllerSnapshot):
                self.render(event)
            elif isinstance(event, WorkerError):
                self.show_error(event.message)
            elif isinstance(event, CommandApplied):
                self.status.set(f"Applied: {event.description}")
                self.banner.configure(foreground="#444")
        self.after(UI_REFRESH_MS, self.poll_worker)

    def show_error(self, message: str) -> None:
        self.status.set(f"Error: {message}")
        self.banner.configure(foreground="#b00020")

    def render(self, snapshot: ControllerSnapshot) -> None:
        if self.fan_rows is None or list(snapshot.fans) != list(self.fan_rows):
            self.build_fan_rows(snapshot)
        for fan in snapshot.fans.values():
            row = self.fan_rows[fan.id]
            row["text"].set(f"{fan.label}: {fan.speed_rpm} RPM")
            state = ["!disabled"] if fan.controllable else ["disabled"]
            for widget in row["widgets"]:
                widget.state(state)
        self.full_speed.set(snapshot.full_speed)

        new_curves = {curve.key: curve for curve in snapshot.curves()}
        if new_curves.keys() != self.curves.keys():
            self.curves = new_curves
            self.render_curves()

    def build_fan_rows(self, snapshot: ControllerSnapshot) -> None:
        """Create one row per fan; later snapshots only update them."""
        for child in self.fans_frame.winfo_children():
            child.destroy()
        self.fan_rows = {}
        if not snapshot.fans:
            ttk.Label(self.fans_frame, text="No fans detected.").pack(anchor="w")
        for row, fan in enumerate(snapshot.fans.values()):
            duty = self.duty_vars.setdefault(fan.id, tk.IntVar(value=fan.duty or 0))
            text = tk.StringVar()
            ttk.Label(self.fans_frame, textvariable=text).grid(row=row, column=0, sticky="w")
            scale = ttk.Scale(self.fans_frame, from_=0, to=255, variable=duty, length=200)
            scale.grid(row=row, column=1, padx=6)
            set_button = ttk.Button(self.fans_frame, text="Set",
                                    command=lambda f=fan.id: self.on_set_duty(f))
            set_button.grid(row=row, column=2)
            auto_button = ttk.Button(self.fans_frame, text="Auto",
                                     command=lambda f=fan.id: self.send(SetDutyCommand(f, 0)))
            auto_button.grid(row=row, column=3)
            self.fan_rows[fan.id] = {"text": text, "widgets": (scale, set_button, auto_button)}

    def render_curves(self) -> None:
        for child in self.curves_frame.winfo_children():
            child.destroy()
        if not self.curves:
            ttk.Label(self.curves_frame, text="No curve data from this platform.").pack(anchor="w")
            return
        for row, (key, curve) in enumerate(sorted(self.curves.items())):
            text = " ".join(f"{p.temperature}:{p.rpm}" for p in curve.points)
            var = self.curve_vars.setdefault(key, tk.StringVar(value=text))
            ttk.Label(self.curves_frame, text=f"Fan {key[0]} / sensor {key[1]}").grid(
                row=row, column=0, sticky="w")
            ttk.Entry(self.curves_frame, textvariable=var, width=48).grid(row=row, column=1, padx=6)
            ttk.Button(self.curves_frame, text="Write",
                       command=lambda k=key: self.on_write_curve(k)).grid(row=row, column=2)

    def send(self, command) -> None:
        self.commands.send(command)
        self.status.set(f"Sent: {command.describe()}")

    def on_set_duty(self, fan_id: str) -> None:
        self.send(SetDutyCommand(fan_id, int(self.duty_vars[fan_id].get())))

    def on_full_speed(self) -> None:
        self.send(SetFullSpeedCommand(self.full_speed.get()))

    def on_write_curve(self, key: tuple) -> None:
        try:
            points = [parse_point(token) for token in self.curve_vars[key].get().split()]
            curve = build_curve_from_points(key[0], key[1], points, self.curves.get(key))
            self.send(SetCurveCommand(curve))
        except (ValueError, FanControlError) as exc:
            self.show_error(str(exc))


def run_gui(config: ConfigManager = None) -> int:
    config = config or ConfigManager()
    commands, snapshots = CommandChannel(), SnapshotChannel()
    worker = threading.Thread(target=_worker_main, args=(config, commands, snapshots),
                              name="fan-worker", daemon=True)
    worker.start()

    root = tk.Tk()
    root.title("Fan Control")
    app = FanControlApp(root, commands, snapshots)
    app.send(RefreshCommand())
    try:
        root.mainloop()
    finally:
        commands.close()
        worker.join(timeout=config.poll_interval * 2)
    return 0
