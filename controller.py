# controller.py
# Single owner of application state; the UI mutates it only through these handlers.

from __future__ import annotations
import logging, threading
from dataclasses import dataclass, field
from typing import List, Optional

from audio_io import AudioBuffer, AudioDecodeError, decode_audio, load_audio_url
from diagnostics import validate_band, validate_bands
from gateway import BackendError, BackendGateway, FFTResult
from playback import PlaybackState
from schema import Band, Mode, SubMode, bands_from_json, bands_to_json, default_bands
from storage import BandStore

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    mode: Mode = Mode.GENERIC
    sub_mode: SubMode = SubMode.NORMAL
    show_spectrograms: bool = False
    file_name: Optional[str] = None
    file_data: Optional[bytes] = None
    input_buffer: Optional[AudioBuffer] = None
    output_buffer: Optional[AudioBuffer] = None
    fft_result: Optional[FFTResult] = None
    is_loading_audio: bool = False
    is_processing_equalizer: bool = False
    custom_bands: List[Band] = field(default_factory=default_bands)
    playback: PlaybackState = field(default_factory=PlaybackState)
    last_error: Optional[str] = None
    # bumped whenever audio/spectra change, so the page knows to redraw
    version: int = 0
    # bumped on every accepted upload; equalizer results for an older upload are dropped
    upload_id: int = 0

    @property
    def has_file(self) -> bool:
        return self.file_data is not None


class Controller:
    def __init__(self, gateway: BackendGateway, band_store: BandStore, audio_loader=None):
        self.gateway = gateway
        self.band_store = band_store
        self._load_url = audio_loader or (lambda url: load_audio_url(url, session=gateway.session))
        self.state = AppState(custom_bands=band_store.load())
        self._lock = threading.Lock()

    # ---------- errors ----------
    def _fail(self, message: str):
        logger.error(message)
        self.state.last_error = message

    def pop_error(self) -> Optional[str]:
        err, self.state.last_error = self.state.last_error, None
        return err

    # ---------- modes & view ----------
    def change_mode(self, mode: Mode, sub_mode: SubMode = SubMode.NORMAL):
        self.state.mode = Mode(mode)
        self.state.sub_mode = SubMode(sub_mode)
        logger.info("Mode changed to: %s %s", self.state.mode.value, self.state.sub_mode.value)

    def toggle_spectrograms(self):
        self.state.show_spectrograms = not self.state.show_spectrograms

    # ---------- custom bands ----------
    def _set_bands(self, bands: List[Band]):
        self.state.custom_bands = list(bands)
        self.band_store.save(self.state.custom_bands)

    def add_band(self, band: Band) -> tuple:
        ok, errs = validate_band(band)
        if not ok:
            return False, errs
        self._set_bands(self.state.custom_bands + [band])
        logger.info("Band added: %s", band)
        return True, []

    def remove_band(self, index: int):
        bands = [b for i, b in enumerate(self.state.custom_bands) if i != index]
        self._set_bands(bands)

    def set_band_gain(self, index: int, gain: float):
        bands = list(self.state.custom_bands)
        if 0 <= index < len(bands):
            bands[index] = Band(bands[index].low, bands[index].high, float(gain))
            self._set_bands(bands)

    def reset_bands(self):
        self.state.custom_bands = self.band_store.reset()

    # ---------- settings file ----------
    def export_settings(self) -> dict:
        return {
            "mode": self.state.mode.value,
            "showSpectrograms": self.state.show_spectrograms,
            "customBands": bands_to_json(self.state.custom_bands),
        }

    def load_settings(self, settings: dict) -> tuple:
        if not isinstance(settings, dict):
            return False, ["settings is not a JSON object"]
        errs = []
        if "mode" in settings:
            try:
                self.state.mode = Mode(settings["mode"])
            except ValueError:
                errs.append(f"unknown mode: {settings['mode']!r}")
        if isinstance(settings.get("showSpectrograms"), bool):
            self.state.show_spectrograms = settings["showSpectrograms"]
        if settings.get("customBands"):
            ok, band_errs = validate_bands(settings["customBands"])
            if ok:
                self._set_bands(bands_from_json(settings["customBands"]))
            else:
                errs.extend(band_errs)
        return (len(errs) == 0), errs

    # ---------- upload ----------
    def upload_audio(self, file_name: str, data: bytes) -> bool:
        """Decode, reset gains, and fetch the unmodified spectrum from the backend."""
        try:
            buffer = decode_audio(data)
        except AudioDecodeError as e:
            self._fail(f"Failed to load audio file: {e}")
            return False

        logger.info("Audio uploaded: %s (%.2fs)", file_name, buffer.duration)
        self.state.is_loading_audio = True
        try:
            self.state.upload_id += 1
            self.state.custom_bands = self.band_store.reset()
            self.state.file_name = file_name
            self.state.file_data = data
            self.state.playback.stop()
            if self.state.sub_mode is SubMode.AI:
                self.state.fft_result = None
            else:
                try:
                    self.state.fft_result = self.gateway.upload_and_process_fft(file_name, data, [])
                except BackendError as e:
                    self.state.fft_result = None
                    self._fail(f"Failed to process audio: {e}")
            # no gains applied yet, so output = input
            self.state.input_buffer = buffer
            self.state.output_buffer = buffer
            self.state.version += 1
        finally:
            self.state.is_loading_audio = False
        return True

    # ---------- equalizer ----------
    def apply_equalizer(self, bands: List[Band]) -> bool:
        """Re-equalize on the backend. A call made while one is in flight is dropped."""
        if not self.state.has_file:
            logger.warning("No audio file uploaded")
            return False
        with self._lock:
            if self.state.is_processing_equalizer:
                logger.warning("Already processing equalizer update, skipping...")
                return False
            self.state.is_processing_equalizer = True
            upload_id = self.state.upload_id
            file_name, file_data = self.state.file_name, self.state.file_data
        try:
            result = self.gateway.update_equalizer_gains(file_name, file_data, bands)
            output = self._load_url(result.output_audio_url) if result.output_audio_url else None
        except (BackendError, AudioDecodeError) as e:
            if upload_id != self.state.upload_id:
                logger.info("Equalizer request for %s superseded by a new upload, ignoring", file_name)
                return False
            self._fail(f"Failed to update equalizer: {e}")
            return False
        finally:
            with self._lock:
                self.state.is_processing_equalizer = False

        if upload_id != self.state.upload_id:
            logger.info("Equalizer result for %s superseded by a new upload, ignoring", file_name)
            return False
        self.state.fft_result = result
        if output is None:
            logger.info("No output audio URL returned; output reset to input")
            output = self.state.input_buffer
        self.state.output_buffer = output
        self.state.version += 1
        return True

