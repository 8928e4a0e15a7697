"""Viewer settings and the thread-safe stop/finish protocol of the viewer loop."""

from __future__ import annotations

import threading
from dataclasses import dataclass

_DEFAULT_FPS = 30.0
_DEFAULT_WIDTH = 640
_DEFAULT_HEIGHT = 480


def _number(mapping, key) -> float:
    value = mapping.get(key)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"setting {key!r} is not a number: {value!r}") from None


@dataclass(frozen=True)
class ViewerSettings:
    """Display parameters of the map viewer."""

    frame_time_ms: float
    image_width: int
    image_height: int
    viewpoint_x: float
    viewpoint_y: float
    viewpoint_z: float
    viewpoint_f: float

    @classmethod
    def from_mapping(cls, mapping):
        """Build viewer settings from a parsed settings mapping."""
        fps = _number(mapping, "Camera.fps")
        if fps < 1:
            fps = _DEFAULT_FPS

        width = int(_number(mapping, "Camera.width"))
        height = int(_number(mapping, "Camera.height"))
        if width < 1 or height < 1:
            width, height = _DEFAULT_WIDTH, _DEFAULT_HEIGHT

        return cls(
            frame_time_ms=1e3 / fps,
            image_width=width,
            image_height=height,
            viewpoint_x=_number(mapping, "Viewer.ViewpointX"),
            viewpoint_y=_number(mapping, "Viewer.ViewpointY"),
            viewpoint_z=_number(mapping, "Viewer.ViewpointZ"),
            viewpoint_f=_number(mapping, "Viewer.ViewpointF"),
        )


class ViewerState:
    """Stop and finish flags shared between the viewer loop and other threads.

    A fresh state counts as finished and stopped until :meth:`start` is called.
    """

    def __init__(self):
        self._finish_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._finish_requested = False
        self._finished = True
        self._stopped = True
        self._stop_requested = False

    def start(self):
        """Mark the viewer loop as running."""
        with self._finish_lock:
            self._finished = False
        with self._stop_lock:
            self._stopped = False

    def request_finish(self):
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self):
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self):
        with self._finish_lock:
            self._finished = True

    def is_finished(self):
        with self._finish_lock:
            return self._finished

    def request_stop(self):
        """Ask a running viewer to pause; ignored while already stopped."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def is_stopped(self):
        with self._stop_lock:
            return self._stopped

    def stop(self):
        """Honour a pending stop request; returns whether the viewer stopped."""
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self):
        """Let a stopped viewer resume."""
        with self._stop_lock:
            self._stopped = False