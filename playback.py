# playback.py
# Transport state shared by the paired input/output playback panels.

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

from utils import clamp

SPEED_LIMITS = (0.25, 4.0)
ZOOM_LIMITS = (1.0, 20.0)


@dataclass
class PlaybackState:
    is_playing: bool = False
    is_paused: bool = False
    time: float = 0.0
    speed: float = 1.0
    zoom: float = 1.0
    pan: float = 0.0     # 0 = window at start, 1 = window at end

    def play(self):
        self.is_playing, self.is_paused = True, False

    def pause(self):
        if self.is_playing:
            self.is_playing, self.is_paused = False, True

    def stop(self):
        self.is_playing, self.is_paused = False, False
        self.time = 0.0

    def seek(self, t: float, duration: float):
        self.time = float(clamp(t, 0.0, max(0.0, duration)))

    def set_speed(self, s: float):
        self.speed = float(clamp(s, *SPEED_LIMITS))

    def set_zoom(self, z: float):
        self.zoom = float(clamp(z, *ZOOM_LIMITS))

    def set_pan(self, p: float):
        self.pan = float(clamp(p, 0.0, 1.0))

    def visible_window(self, duration: float) -> Tuple[float, float]:
        """Time span shown by the waveform view at the current zoom/pan."""
        if duration <= 0:
            return 0.0, 0.0
        span = duration / self.zoom
        t0 = (duration - span) * self.pan
        return t0, t0 + span
