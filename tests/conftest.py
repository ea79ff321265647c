import io
import numpy as np
import pytest
import soundfile as sf

from audio_io import AudioBuffer

SR = 8000


def _sine(freq, dur=0.5, sr=SR, amp=0.5):
    t = np.arange(int(sr * dur)) / sr
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def _wav_bytes(y, sr=SR):
    buf = io.BytesIO()
    sf.write(buf, np.asarray(y).T if np.ndim(y) == 2 else y, sr, format="WAV", subtype="FLOAT")
    return buf.getvalue()


def _backend_payload(y, sr=SR, modified_wav=None, gain=1.0):
    """Same shape the DSP backend returns from /upload_wav_and_fft."""
    spectrum = np.fft.fft(np.asarray(y, dtype=np.float64))
    out = spectrum * gain
    p = {
        "status": "success",
        "original_fft_real": spectrum.real.tolist(),
        "original_fft_imag": spectrum.imag.tolist(),
        "fft_real": out.real.tolist(),
        "fft_imag": out.imag.tolist(),
        "sample_rate": sr,
        "fft_size": len(y),
        "applied_adjustments": [],
        "has_modifications": gain != 1.0,
    }
    if modified_wav:
        p["modified_wav"] = modified_wav
    return p


@pytest.fixture
def sine():
    return _sine


@pytest.fixture
def wav_bytes():
    return _wav_bytes


@pytest.fixture
def backend_payload():
    return _backend_payload


@pytest.fixture
def buffer_of():
    def make(*channels, sr=SR):
        return AudioBuffer(sample_rate=sr, data=np.vstack([np.asarray(c, dtype=np.float32) for c in channels]))
    return make


# ---------- HTTP fakes ----------

class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b"", text=""):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; handlers decide the responses."""

    def __init__(self, post=None, get=None):
        self.post_handler = post
        self.get_handler = get
        self.posts = []
        self.gets = []

    def post(self, url, files=None, data=None, timeout=None):
        self.posts.append({"url": url, "files": files, "data": data})
        if self.post_handler is None:
            return FakeResponse(404, {"error": "not found"})
        return self.post_handler(url, files, data)

    def get(self, url, timeout=None):
        self.gets.append(url)
        if self.get_handler is None:
            return FakeResponse(404, {"error": "not found"})
        return self.get_handler(url)


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def response():
    return FakeResponse


# ---------- timers ----------

class ManualTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


class TimerLog(list):
    def factory(self, delay, fn):
        t = ManualTimer(delay, fn)
        self.append(t)
        return t


@pytest.fixture
def timers():
    """Created timers, in order; pass `timers.factory` as the timer factory."""
    return TimerLog()
