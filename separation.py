# separation.py
# AI stem/voice separation: stage machine, stem loading, and additive mixing of the stems.

from __future__ import annotations
import logging, threading, time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from audio_io import AudioBuffer, load_audio_url
from gateway import BackendGateway, BackendError
from schema import DEFAULT_VOICE_SLOTS, INSTRUMENT_STEMS, Mode, UNITY_GAIN

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INITIAL = "initial"
    SEPARATING = "separating"
    SEPARATED = "separated"


@dataclass
class SeparatedTrack:
    id: str
    name: str
    audio_buffer: AudioBuffer
    gain: float = UNITY_GAIN
    muted: bool = False
    solo: bool = False


def active_tracks(tracks: List[SeparatedTrack]) -> List[SeparatedTrack]:
    """Unmuted stems; when anything is soloed, only the soloed ones among them."""
    unmuted = [t for t in tracks if not t.muted]
    if any(t.solo for t in tracks):
        return [t for t in unmuted if t.solo]
    return unmuted


def mix_tracks(tracks: List[SeparatedTrack]) -> Optional[AudioBuffer]:
    """
    Sum active stems sample-by-sample (stem * gain) into a new buffer shaped
    like the first active stem. No clipping or normalization: the result may
    exceed +/-1. With no active stems the result is silence shaped like the
    first stem; with no stems at all, None.
    """
    if not tracks:
        return None
    active = active_tracks(tracks)
    ref = (active[0] if active else tracks[0]).audio_buffer
    out = np.zeros((ref.channels, ref.length), dtype=np.float32)
    for t in active:
        src = t.audio_buffer.data
        ch = min(ref.channels, src.shape[0])
        n = min(ref.length, src.shape[1])
        out[:ch, :n] += src[:ch, :n] * np.float32(t.gain)
    return AudioBuffer(sample_rate=ref.sample_rate, data=out)


def separation_kind(mode: Mode) -> str:
    return "music" if Mode(mode) is Mode.MUSIC else "speech"


class SeparationWorkflow:
    """initial -> separating -> separated, and back to initial on error."""

    def __init__(self, gateway: BackendGateway, kind: str = "music",
                 loader: Callable[[str], AudioBuffer] | None = None):
        self.gateway = gateway
        self.kind = kind
        self._load = loader or (lambda url: load_audio_url(url, session=gateway.session))
        self.stage = Stage.INITIAL
        self.progress = 0.0
        self.tracks: List[SeparatedTrack] = []
        self.input_buffer: Optional[AudioBuffer] = None
        self.output_buffer: Optional[AudioBuffer] = None
        self._lock = threading.Lock()

    # ---------- input ----------
    def load_input(self, buffer: AudioBuffer):
        """A new upload resets to the initial stage."""
        with self._lock:
            self.input_buffer = buffer
            self.output_buffer = buffer
            self.tracks = []
            self.stage = Stage.INITIAL
            self.progress = 0.0

    def _progress_hook(self, listener):
        def on_progress(data: dict):
            try:
                p = float(data.get("progress", 0.0)) * 100.0
            except (TypeError, ValueError):
                return
            with self._lock:
                self.progress = max(0.0, min(100.0, p))
            if listener:
                listener(self.progress, data.get("message"))
        return on_progress

    # ---------- separation ----------
    def separate(self, file_name: str, data: bytes, session_id: str | None = None,
                 on_progress: Callable[[float, Optional[str]], None] | None = None) -> List[SeparatedTrack]:
        """Run the backend separation and load every returned stem. `on_progress(percent, message)`."""
        if not data:
            raise ValueError("Please upload an audio file first.")
        session_id = session_id or str(int(time.time() * 1000))
        hook = self._progress_hook(on_progress)
        with self._lock:
            self.stage = Stage.SEPARATING
            self.progress = 10.0
        try:
            if self.kind == "music":
                gains = {stem: UNITY_GAIN for stem in INSTRUMENT_STEMS}
                result = self.gateway.separate_instruments(file_name, data, gains, session_id, hook)
                tracks = []
                for stem in INSTRUMENT_STEMS:
                    fname = result["files"].get(stem)
                    if not fname:
                        logger.info("No %s stem returned (no signal)", stem)
                        continue
                    buf = self._load(self.gateway.download_url(fname))
                    tracks.append(SeparatedTrack(id=stem, name=stem.capitalize(), audio_buffer=buf))
            else:
                gains = {i: UNITY_GAIN for i in range(DEFAULT_VOICE_SLOTS)}
                result = self.gateway.separate_voices(file_name, data, gains, session_id, hook)
                tracks = [
                    SeparatedTrack(id=f"voice_{i}", name=f"Voice {i + 1}",
                                   audio_buffer=self._load(self.gateway.download_url(fname)))
                    for i, fname in enumerate(result["files"])
                ]
            if not tracks:
                raise BackendError("Separation returned no stems")
        except Exception:
            logger.exception("Separation error")
            with self._lock:
                self.stage = Stage.INITIAL
                self.progress = 0.0
                self.tracks = []
            raise

        with self._lock:
            self.tracks = tracks
            self.progress = 100.0
            self.stage = Stage.SEPARATED
        self.remix()
        logger.info("Separation complete: %s", ", ".join(t.name for t in tracks))
        return tracks

    # ---------- stem controls ----------
    def _track(self, track_id: str) -> SeparatedTrack:
        for t in self.tracks:
            if t.id == track_id:
                return t
        raise KeyError(track_id)

    def set_gain(self, track_id: str, gain: float):
        self._track(track_id).gain = float(gain)
        self.remix()

    def toggle_mute(self, track_id: str):
        t = self._track(track_id)
        t.muted = not t.muted
        self.remix()

    def toggle_solo(self, track_id: str):
        t = self._track(track_id)
        t.solo = not t.solo
        self.remix()

    def remix(self) -> Optional[AudioBuffer]:
        if self.stage is not Stage.SEPARATED or not self.tracks:
            return self.output_buffer
        self.output_buffer = mix_tracks(self.tracks)
        return self.output_buffer
