# schema.py
# Central contract for modes, preset band ranges, and limits used across the app.

from __future__ import annotations
import math
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Tuple


class Mode(str, Enum):
    GENERIC = "generic"
    MUSIC = "music"
    ANIMAL = "animal"
    HUMAN = "human"


class SubMode(str, Enum):
    NORMAL = "normal"
    AI = "ai"


# Modes that offer AI separation as a sub-mode
SEPARATION_MODES = (Mode.MUSIC, Mode.HUMAN)

# Fixed slider layout per preset mode: (label, low_hz, high_hz)
PRESET_BANDS: Dict[Mode, List[Tuple[str, float, float]]] = {
    Mode.MUSIC: [
        ("Drums", 60, 200),
        ("Bass", 80, 250),
        ("Guitar", 200, 800),
        ("Piano", 250, 4000),
        ("Vocals", 300, 3500),
        ("Synth", 500, 8000),
    ],
    Mode.ANIMAL: [
        ("Dog", 500, 1000),
        ("Cat", 600, 1500),
        ("Bird", 1000, 8000),
        ("Whale", 20, 200),
        ("Elephant", 15, 100),
        ("Wolf", 400, 800),
    ],
    Mode.HUMAN: [
        ("Male 1", 85, 180),
        ("Female 1", 165, 255),
        ("Child", 250, 400),
        ("Male 2", 85, 180),
        ("Female 2", 165, 255),
        ("Elder", 80, 200),
    ],
}

# Guardrails
GAIN_LIMITS = (0.0, 2.0)
GAIN_STEP = 0.01
UNITY_GAIN = 1.0

# Persistence
STORAGE_KEY = "equalizer-custom-bands"
DEFAULT_BAND_EDGES = [(0, 5000), (5000, 10000), (10000, 15000), (15000, 24000)]

# Timing
DEBOUNCE_MS = 800
STATUS_POLL_S = 0.5

# Spectral display
LOCAL_FFT_SIZE = 2048
AUDIOGRAM_RANGE_HZ = (125.0, 8000.0)
AUDIOGRAM_TICKS_HZ = [125, 250, 500, 1000, 2000, 4000, 8000]
SPECTROGRAM_WINDOW = 2048
SPECTROGRAM_HOP = 512

# Separation
INSTRUMENT_STEMS = ["drums", "bass", "vocals", "guitar", "piano", "other"]
DEFAULT_VOICE_SLOTS = 4


@dataclass
class Band:
    low: float
    high: float
    gain: float = UNITY_GAIN

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Band":
        """Accepts both {low, high} and the older {startFreq, endFreq} keys."""
        low = d.get("low", d.get("startFreq", 0.0))
        high = d.get("high", d.get("endFreq", 0.0))
        gain = d.get("gain", UNITY_GAIN)
        return cls(low=float(low), high=float(high), gain=float(gain))

    def label(self) -> str:
        return f"{self.low:g}-{self.high:g}Hz"

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.low, self.high, self.gain))


def default_bands() -> List[Band]:
    return [Band(low, high, UNITY_GAIN) for low, high in DEFAULT_BAND_EDGES]


def bands_to_json(bands: List[Band]) -> List[dict]:
    return [b.to_dict() for b in bands]


def bands_from_json(raw) -> List[Band]:
    return [Band.from_dict(d) for d in (raw or []) if isinstance(d, dict)]


def preset_bands(mode: Mode) -> List[Tuple[str, float, float]]:
    """Fixed (label, low, high) rows for a preset mode; generic has none."""
    mode = Mode(mode)
    if mode is Mode.GENERIC:
        return []
    return list(PRESET_BANDS[mode])


def format_hz(f: float) -> str:
    return f"{f / 1000:g}k" if f >= 1000 else f"{f:g}"
