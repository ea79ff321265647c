# audio_io.py
# Decode uploads / remote WAVs into in-memory PCM buffers, and back to WAV bytes for playback.

from __future__ import annotations
import io, logging
from dataclasses import dataclass

import numpy as np
import requests
import soundfile as sf

from gateway import BackendError

logger = logging.getLogger(__name__)


class AudioDecodeError(ValueError):
    """Corrupt, unsupported or empty audio."""


@dataclass(frozen=True)
class AudioBuffer:
    """Decoded audio. `data` is (channels, length) float32 and read-only."""
    sample_rate: int
    data: np.ndarray

    def __post_init__(self):
        arr = np.array(self.data, dtype=np.float32, copy=True)
        if arr.ndim == 1:
            arr = arr[np.newaxis, :]
        if arr.ndim != 2:
            raise ValueError(f"audio data must be 1-D or 2-D, got {arr.ndim}-D")
        if int(self.sample_rate) <= 0:
            raise ValueError(f"sample rate must be positive: {self.sample_rate}")
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def channels(self) -> int:
        return self.data.shape[0]

    @property
    def length(self) -> int:
        return self.data.shape[1]

    @property
    def duration(self) -> float:
        return self.length / float(self.sample_rate)

    def channel(self, i: int) -> np.ndarray:
        return self.data[i]

    def mono(self) -> np.ndarray:
        return self.data.mean(axis=0) if self.channels > 1 else self.data[0]


def decode_audio(data: bytes) -> AudioBuffer:
    if not data:
        raise AudioDecodeError("empty file")
    try:
        y, sr = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as e:  # LibsndfileError is a RuntimeError
        raise AudioDecodeError(f"could not decode audio: {e}") from e
    if y.shape[0] == 0:
        raise AudioDecodeError("audio has no samples")
    # soundfile gives (frames, channels)
    return AudioBuffer(sample_rate=sr, data=y.T)


def load_audio_url(url: str, session: requests.Session | None = None, timeout: float = 60.0) -> AudioBuffer:
    """Fetch a remote WAV/audio file and decode it."""
    http = session or requests
    logger.info("Loading audio from %s", url)
    try:
        resp = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise BackendError(f"failed to fetch {url}: {e}") from e
    if resp.status_code != 200:
        raise BackendError(f"failed to fetch {url}: HTTP {resp.status_code}")
    return decode_audio(resp.content)


def encode_wav(buffer: AudioBuffer, speed: float = 1.0) -> bytes:
    """WAV bytes; `speed` != 1 rewrites the header rate (tape-style speed change)."""
    buf = io.BytesIO()
    rate = max(1, int(round(buffer.sample_rate * speed)))
    sf.write(buf, buffer.data.T, rate, format="WAV", subtype="FLOAT")
    return buf.getvalue()
