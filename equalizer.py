# equalizer.py
# Gain sliders for the current mode, with debounced hand-off of the band list to the backend.

from __future__ import annotations
import logging, threading
from enum import Enum
from typing import Callable, List, Optional

from schema import Band, DEBOUNCE_MS, GAIN_LIMITS, Mode, UNITY_GAIN, preset_bands
from utils import clamp

logger = logging.getLogger(__name__)


class PanelState(str, Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    APPLYING = "applying"


class Debouncer:
    """
    Single pending timer. schedule() always drops the previous timer,
    so only the last call in a burst fires.
    """

    def __init__(self, delay_s: float, timer_factory: Callable = threading.Timer):
        self.delay_s = delay_s
        self._factory = timer_factory
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()

    def schedule(self, fn: Callable[[], None]):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = self._factory(self.delay_s, self._wrap(fn, self._generation))
            # daemon so a pending timer never keeps the interpreter alive
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._timer = timer
        timer.start()

    def _wrap(self, fn, generation: int):
        def run():
            with self._lock:
                # superseded between firing and taking the lock
                if generation != self._generation:
                    return
                self._timer = None
            fn()
        return run

    def cancel(self):
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        return self._timer is not None


class EqualizerPanel:
    """
    Owns slider values for one mode. `on_apply(bands)` is called from the
    debounce timer with the full band list built from the latest values.
    """

    def __init__(
        self,
        mode: Mode,
        custom_bands: Optional[List[Band]] = None,
        on_apply: Optional[Callable[[List[Band]], None]] = None,
        on_gain_change: Optional[Callable[[int, float], None]] = None,
        delay_s: float = DEBOUNCE_MS / 1000.0,
        timer_factory: Callable = threading.Timer,
    ):
        self.mode = Mode(mode)
        self.custom_bands = list(custom_bands or [])
        self.on_apply = on_apply
        self.on_gain_change = on_gain_change
        self.enabled = True
        self.state = PanelState.IDLE
        self._lock = threading.Lock()
        self._debouncer = Debouncer(delay_s, timer_factory)
        self.values: List[float] = self._initial_values()

    def _initial_values(self) -> List[float]:
        if self.mode is Mode.GENERIC:
            return [float(b.gain) for b in self.custom_bands]
        return [UNITY_GAIN for _ in preset_bands(self.mode)]

    # ---------- layout ----------
    def labels(self) -> List[tuple]:
        """(label, range_text) per slider."""
        if self.mode is Mode.GENERIC:
            return [(b.label(), "") for b in self.custom_bands]
        return [(name, f"{lo:g}-{hi:g}Hz") for name, lo, hi in preset_bands(self.mode)]

    def ranges(self) -> List[tuple]:
        if self.mode is Mode.GENERIC:
            return [(b.low, b.high) for b in self.custom_bands]
        return [(lo, hi) for _, lo, hi in preset_bands(self.mode)]

    @property
    def average_gain(self) -> float:
        return sum(self.values) / len(self.values) if self.values else UNITY_GAIN

    # ---------- slider movement ----------
    def set_gain(self, index: int, value: float) -> float:
        v = float(clamp(float(value), *GAIN_LIMITS))
        with self._lock:
            if not (0 <= index < len(self.values)):
                raise IndexError(f"no slider {index} (have {len(self.values)})")
            self.values[index] = v
            if self.mode is Mode.GENERIC:
                self.custom_bands[index] = Band(self.custom_bands[index].low, self.custom_bands[index].high, v)
        if self.on_gain_change:
            self.on_gain_change(index, v)
        if self.enabled and self.on_apply:
            with self._lock:
                if self.state is not PanelState.APPLYING:
                    self.state = PanelState.PENDING_DEBOUNCE
            self._debouncer.schedule(self.flush)
        return v

    def build_bands(self) -> List[Band]:
        """Frequency ranges merged with the current gains (read at call time)."""
        with self._lock:
            return [Band(lo, hi, g) for (lo, hi), g in zip(self.ranges(), self.values)]

    def flush(self):
        """Debounce expiry: send the current band list."""
        bands = self.build_bands()
        with self._lock:
            self.state = PanelState.APPLYING
        logger.info("Sending %d bands to backend", len(bands))
        try:
            self.on_apply(bands)
        except Exception:
            logger.exception("Equalizer processing error")
        finally:
            with self._lock:
                self.state = PanelState.PENDING_DEBOUNCE if self._debouncer.pending else PanelState.IDLE

    # ---------- lifecycle ----------
    def reset(self):
        self._debouncer.cancel()
        with self._lock:
            self.values = [UNITY_GAIN for _ in self.values]
            self.custom_bands = [Band(b.low, b.high, UNITY_GAIN) for b in self.custom_bands]
            self.state = PanelState.IDLE

    def sync(self, mode: Mode, custom_bands: Optional[List[Band]] = None):
        """Re-seed values when the mode or the number of custom bands changes."""
        mode = Mode(mode)
        custom_bands = list(custom_bands or [])
        if mode is self.mode and (mode is not Mode.GENERIC or len(custom_bands) == len(self.custom_bands)):
            if mode is Mode.GENERIC:
                with self._lock:
                    self.custom_bands = custom_bands
                    self.values = [float(b.gain) for b in custom_bands]
            return
        self._debouncer.cancel()
        with self._lock:
            self.mode = mode
            self.custom_bands = custom_bands
            self.values = self._initial_values()
            self.state = PanelState.IDLE

    def close(self):
        self._debouncer.cancel()
        with self._lock:
            if self.state is PanelState.PENDING_DEBOUNCE:
                self.state = PanelState.IDLE
