# gateway.py
# HTTP client for the processing backend (FFT/equalizer, stem separation, downloads).

from __future__ import annotations
import json, logging, time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from schema import Band, INSTRUMENT_STEMS, STATUS_POLL_S
from utils import env_or_secret

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = "http://localhost:5001"

ProgressFn = Callable[[dict], None]


class BackendError(RuntimeError):
    """Network, HTTP or payload failure talking to the backend."""


@dataclass
class FFTResult:
    fft_real: list
    fft_imag: list
    sample_rate: int
    fft_size: int
    original_fft_real: Optional[list] = None
    original_fft_imag: Optional[list] = None
    modified_wav: Optional[str] = None
    output_audio_url: Optional[str] = None
    applied_adjustments: List[dict] = field(default_factory=list)
    has_modifications: bool = False
    input_spectrogram: Optional[list] = None
    output_spectrogram: Optional[list] = None
    spectrogram_frequencies: Optional[list] = None
    spectrogram_times: Optional[list] = None

    @classmethod
    def from_payload(cls, payload: dict, download_url: Callable[[str], str]) -> "FFTResult":
        try:
            fft_real = payload["fft_real"]
            fft_imag = payload["fft_imag"]
            sample_rate = int(payload["sample_rate"])
            fft_size = int(payload.get("fft_size") or len(fft_real))
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError(f"FFT response missing fields: {e}") from e
        modified = payload.get("modified_wav") or None
        return cls(
            fft_real=fft_real,
            fft_imag=fft_imag,
            sample_rate=sample_rate,
            fft_size=fft_size,
            original_fft_real=payload.get("original_fft_real"),
            original_fft_imag=payload.get("original_fft_imag"),
            modified_wav=modified,
            output_audio_url=download_url(modified) if modified else None,
            applied_adjustments=list(payload.get("applied_adjustments") or []),
            has_modifications=bool(payload.get("has_modifications", False)),
            input_spectrogram=payload.get("input_spectrogram"),
            output_spectrogram=payload.get("output_spectrogram"),
            spectrogram_frequencies=payload.get("spectrogram_frequencies"),
            spectrogram_times=payload.get("spectrogram_times"),
        )


def _error_text(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)[:200]


class BackendGateway:
    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        session: requests.Session | None = None,
        timeout: float = 600.0,
        poll_interval: float = STATUS_POLL_S,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.poll_interval = poll_interval

    # ---------- plumbing ----------
    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def download_url(self, filename: str) -> str:
        return self.url(f"api/download/{quote(filename)}")

    def _json(self, resp, what: str) -> dict:
        if resp.status_code >= 400:
            raise BackendError(f"{what} failed: HTTP {resp.status_code}: {_error_text(resp)}")
        try:
            body = resp.json()
        except ValueError as e:
            raise BackendError(f"{what} returned invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise BackendError(f"{what} returned unexpected payload: {type(body).__name__}")
        if body.get("success") is False or (body.get("error") and "fft_real" not in body):
            raise BackendError(f"{what} failed: {body.get('error') or 'unknown error'}")
        return body

    def _post(self, path: str, what: str, files=None, data=None) -> dict:
        try:
            resp = self.session.post(self.url(path), files=files, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendError(f"{what} failed: {e}") from e
        return self._json(resp, what)

    # ---------- health ----------
    def health(self) -> dict:
        try:
            resp = self.session.get(self.url("health"), timeout=5)
        except requests.RequestException as e:
            raise BackendError(f"health check failed: {e}") from e
        return self._json(resp, "health check")

    # ---------- FFT / equalizer ----------
    def upload_and_process_fft(self, file_name: str, data: bytes, bands: List[Band]) -> FFTResult:
        """Upload audio and get its spectrum, with `bands` applied when non-empty."""
        form = {}
        if bands:
            form["bands"] = json.dumps([b.to_dict() for b in bands])
        logger.info("POST /upload_wav_and_fft %s (%d bands)", file_name, len(bands or []))
        payload = self._post(
            "upload_wav_and_fft", "FFT processing",
            files={"file": (file_name, data)}, data=form,
        )
        return FFTResult.from_payload(payload, self.download_url)

    def update_equalizer_gains(self, file_name: str, data: bytes, bands: List[Band]) -> FFTResult:
        return self.upload_and_process_fft(file_name, data, bands)

    # ---------- separation ----------
    def fetch_status(self, session_id: str) -> dict | None:
        try:
            resp = self.session.get(self.url(f"status/{quote(session_id)}"), timeout=5)
        except requests.RequestException as e:
            logger.warning("Status poll failed for %s: %s", session_id, e)
            return None
        if resp.status_code != 200:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    def _run_with_progress(self, fn: Callable[[], dict], session_id: str, on_progress: ProgressFn | None) -> dict:
        """Run a blocking request on a worker and poll /status until it returns."""
        with ThreadPoolExecutor(max_workers=1) as pool:
            fut = pool.submit(fn)
            last = None
            while True:
                done, _ = wait([fut], timeout=self.poll_interval)
                if done:
                    break
                status = self.fetch_status(session_id)
                if on_progress and status and "progress" in status:
                    try:
                        p = float(status["progress"])
                    except (TypeError, ValueError):
                        continue
                    if p != last:
                        last = p
                        on_progress({"progress": p, "stage": status.get("stage"), "message": status.get("message")})
            return fut.result()

    def separate_instruments(
        self, file_name: str, data: bytes, gains: Dict[str, float],
        session_id: str | None = None, on_progress: ProgressFn | None = None,
    ) -> dict:
        session_id = session_id or str(int(time.time() * 1000))
        form = {"session_id": session_id}
        for stem in INSTRUMENT_STEMS:
            form[stem] = str(float(gains.get(stem, 1.0)))
        logger.info("POST /api/separate %s session=%s", file_name, session_id)

        def call():
            return self._post("api/separate", "Instrument separation",
                              files={"audio": (file_name, data)}, data=form)

        result = self._run_with_progress(call, session_id, on_progress)
        files = result.get("files") or {}
        if not isinstance(files, dict):
            raise BackendError("Instrument separation returned malformed 'files'")
        result["files"] = {k: v for k, v in files.items() if v}
        return result

    def separate_voices(
        self, file_name: str, data: bytes, gains: Dict[int, float],
        session_id: str | None = None, on_progress: ProgressFn | None = None,
    ) -> dict:
        session_id = session_id or str(int(time.time() * 1000))
        form = {"session_id": session_id}
        for idx, g in (gains or {}).items():
            form[f"source_{int(idx)}"] = str(float(g))
        logger.info("POST /api/separate-voices %s session=%s", file_name, session_id)

        def call():
            return self._post("api/separate-voices", "Voice separation",
                              files={"audio": (file_name, data)}, data=form)

        result = self._run_with_progress(call, session_id, on_progress)
        files = result.get("files") or []
        if not isinstance(files, list):
            raise BackendError("Voice separation returned malformed 'files'")
        result["files"] = [f for f in files if f]
        return result


def make_gateway(passed_url: str | None = None, session: requests.Session | None = None) -> BackendGateway:
    """Priority: function arg > Streamlit secrets > env var > localhost default."""
    if passed_url and passed_url.strip():
        url = passed_url.strip()
    else:
        url = env_or_secret("EQ_BACKEND_URL", DEFAULT_BACKEND_URL)
    return BackendGateway(url, session=session)
