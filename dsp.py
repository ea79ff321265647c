# dsp.py
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import librosa
import numpy as np

from schema import AUDIOGRAM_RANGE_HZ, LOCAL_FFT_SIZE, SPECTROGRAM_HOP, SPECTROGRAM_WINDOW

logger = logging.getLogger(__name__)

# ---------- Spectrum container ----------

@dataclass
class SpectrumData:
    frequencies: np.ndarray   # Hz, ascending
    magnitudes: np.ndarray    # >= 0, same length
    sample_rate: int
    fft_size: int

    @property
    def buffer_length(self) -> int:
        return self.fft_size // 2


# ---------- Local (visual-only) DFT ----------

def _dft_bins(fft_size: int, sample_rate: int) -> np.ndarray:
    return np.arange(fft_size // 2) * float(sample_rate) / fft_size


def local_dft(samples: np.ndarray, sample_rate: int, fft_size: int = LOCAL_FFT_SIZE) -> SpectrumData:
    """
    Direct O(N^2) DFT over `fft_size` samples from the middle of the signal.
    Only for display when the backend has not sent spectral data.
    """
    x = np.asarray(samples, dtype=np.float64).ravel()
    start = max(0, (len(x) - fft_size) // 2)
    window = x[start:start + fft_size]
    n = np.arange(len(window))
    k = np.arange(fft_size // 2)
    phase = -2.0 * np.pi * np.outer(k, n) / fft_size
    real = np.cos(phase) @ window
    imag = np.sin(phase) @ window
    mags = np.sqrt(real * real + imag * imag) / fft_size
    return SpectrumData(
        frequencies=_dft_bins(fft_size, sample_rate),
        magnitudes=mags,
        sample_rate=int(sample_rate),
        fft_size=int(fft_size),
    )


def spectrum_from_backend(fft_real, fft_imag, sample_rate: int, fft_size: int) -> SpectrumData:
    """First half of a backend full-length FFT as a magnitude spectrum."""
    if fft_real is None or fft_imag is None:
        raise ValueError("No FFT data provided")
    half = int(fft_size) // 2
    re = np.asarray(fft_real, dtype=np.float64)[:half]
    im = np.asarray(fft_imag, dtype=np.float64)[:half]
    if len(re) < half or len(im) < half:
        raise ValueError(f"FFT arrays shorter than fft_size/2 ({len(re)}, {len(im)} < {half})")
    return SpectrumData(
        frequencies=_dft_bins(int(fft_size), sample_rate),
        magnitudes=np.sqrt(re * re + im * im),
        sample_rate=int(sample_rate),
        fft_size=int(fft_size),
    )


def spectra_for_display(fft_result=None, input_buffer=None, output_buffer=None
                        ) -> Tuple[Optional[SpectrumData], Optional[SpectrumData]]:
    """
    (input, output) spectra. Backend arrays win; otherwise a local DFT of
    channel 0 of each buffer. Output alone is enough to draw.
    """
    if fft_result is not None:
        try:
            out = spectrum_from_backend(fft_result.fft_real, fft_result.fft_imag,
                                        fft_result.sample_rate, fft_result.fft_size)
            inp = None
            if fft_result.original_fft_real is not None and fft_result.original_fft_imag is not None:
                inp = spectrum_from_backend(fft_result.original_fft_real, fft_result.original_fft_imag,
                                            fft_result.sample_rate, fft_result.fft_size)
            return inp, out
        except ValueError as e:
            logger.error("Error processing backend FFT: %s", e)

    inp = local_dft(input_buffer.channel(0), input_buffer.sample_rate) if input_buffer is not None else None
    out = local_dft(output_buffer.channel(0), output_buffer.sample_rate) if output_buffer is not None else None
    if out is None:
        # a lone input is drawn as the single trace
        return None, inp
    if inp is not None and output_buffer is input_buffer:
        return None, out
    return inp, out


# ---------- Normalization ----------

def normalize_pair(output_mags, input_mags=None):
    """
    Scale by the max across both series and clamp to [0, 1].
    Returns (norm_output, norm_input|None), or None when there is nothing to draw.
    """
    out = np.asarray(output_mags, dtype=np.float64)
    inp = None if input_mags is None else np.asarray(input_mags, dtype=np.float64)
    peaks = [np.max(a) for a in (out, inp) if a is not None and a.size]
    max_mag = max(peaks) if peaks else 0.0
    if not np.isfinite(max_mag) or max_mag <= 0:
        logger.warning("All magnitudes are zero, skipping spectrum draw")
        return None
    norm_out = np.clip(out / max_mag, 0.0, 1.0)
    norm_in = None if inp is None else np.clip(inp / max_mag, 0.0, 1.0)
    return norm_out, norm_in


# ---------- Axis mapping ----------

def linear_x(n: int) -> np.ndarray:
    """Bin index -> fraction of plot width."""
    return np.arange(n) / float(n) if n else np.zeros(0)


def audiogram_x(freqs) -> np.ndarray:
    lo, hi = AUDIOGRAM_RANGE_HZ
    f = np.asarray(freqs, dtype=np.float64)
    return np.log10(f / lo) / np.log10(hi / lo)


def audiogram_mask(freqs) -> np.ndarray:
    lo, hi = AUDIOGRAM_RANGE_HZ
    f = np.asarray(freqs, dtype=np.float64)
    return (f >= lo) & (f <= hi)


def spectrum_trace(freqs, values, scale: str = "linear") -> Tuple[np.ndarray, np.ndarray]:
    """(x in [0,1], y) for one curve; audiogram drops points outside 125-8000 Hz."""
    freqs = np.asarray(freqs, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    if scale == "audiogram":
        m = audiogram_mask(freqs)
        return audiogram_x(freqs[m]), values[m]
    if scale != "linear":
        raise ValueError(f"unknown scale: {scale}")
    return linear_x(len(values)), values


# ---------- Spectrogram fallback ----------

def local_spectrogram(samples: np.ndarray, sample_rate: int,
                      n_fft: int = SPECTROGRAM_WINDOW, hop: int = SPECTROGRAM_HOP):
    """
    dB spectrogram [time, freq] with Hamming windows, plus (times, freqs) axes.
    Matches the layout the backend returns in input_spectrogram/output_spectrogram.
    """
    y = np.asarray(samples, dtype=np.float32)
    if len(y) < n_fft:
        y = np.pad(y, (0, n_fft - len(y)))
    S = np.abs(librosa.stft(y, n_fft=n_fft, hop_length=hop, window="hamming", center=False))
    S_db = 20.0 * np.log10(S + 1e-10)
    freqs = librosa.fft_frequencies(sr=sample_rate, n_fft=n_fft)
    times = librosa.frames_to_time(np.arange(S.shape[1]), sr=sample_rate, hop_length=hop)
    return S_db.T, times, freqs
