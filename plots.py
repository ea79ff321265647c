# plots.py: spectrum, spectrogram and waveform drawing (headless matplotlib) + altair gain curve

import numpy as np
import pandas as pd
import altair as alt
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from dsp import audiogram_x, normalize_pair, spectrum_trace
from schema import AUDIOGRAM_TICKS_HZ, format_hz


# -------------------------- palette --------------------------
BG = "#0f1419"
GRID = "#1e293b"
INK = "#e4e4e7"
INK_DIM = "#94a3b8"
ORIGINAL = "#22c55e"
EQUALIZED = "#a855f7"
SINGLE = "#8b5cf6"
PLAYHEAD = "#fbbf24"

FIG_SIZE = (6.4, 2.6)   # fixed drawing surface, inches
DPI = 110
PLOT_HEADROOM = 0.8     # curves use the lower 80% of the plot height


def _surface(figsize=FIG_SIZE):
    fig, ax = plt.subplots(figsize=figsize, dpi=DPI)
    fig.patch.set_facecolor(BG)
    ax.set_facecolor(BG)
    for s in ax.spines.values():
        s.set_color(GRID)
    ax.tick_params(colors=INK_DIM, labelsize=7)
    return fig, ax


def _placeholder(fig, ax, text):
    ax.set_axis_off()
    ax.text(0.5, 0.5, text, color=INK_DIM, ha="center", va="center", fontsize=9, transform=ax.transAxes)
    return fig


def _x_ticks(ax, scale, sample_rate):
    if scale == "audiogram":
        ticks = audiogram_x(AUDIOGRAM_TICKS_HZ)
        ax.set_xticks(ticks)
        ax.set_xticklabels([format_hz(f) for f in AUDIOGRAM_TICKS_HZ])
    else:
        nyq = sample_rate / 2.0
        fr = np.linspace(0, 1, 6)
        ax.set_xticks(fr)
        ax.set_xticklabels([f"{f * nyq / 1000:.0f}k" for f in fr])


def draw_spectrum(input_spectrum, output_spectrum, scale="linear", label="Fourier Transform"):
    """
    One fixed-size figure. Output alone draws a single curve; with an input it
    draws Original vs Equalized on a shared vertical scale.
    """
    fig, ax = _surface()
    if output_spectrum is None:
        return _placeholder(fig, ax, "Upload audio file to see frequency analysis")

    norm = normalize_pair(
        output_spectrum.magnitudes,
        None if input_spectrum is None else input_spectrum.magnitudes,
    )
    ax.set_xlim(0, 1); ax.set_ylim(0, 1)
    ax.grid(True, color=GRID, linestyle=(0, (2, 2)), linewidth=0.8)
    ax.set_yticklabels([])
    _x_ticks(ax, scale, output_spectrum.sample_rate)
    ax.set_title(f"{label} · {'Audiogram' if scale == 'audiogram' else 'Linear'}", color=INK, fontsize=9, loc="left")
    if norm is None:
        return fig
    norm_out, norm_in = norm

    if norm_in is not None:
        x, y = spectrum_trace(input_spectrum.frequencies, norm_in, scale)
        ax.plot(x, y * PLOT_HEADROOM, color=ORIGINAL, linewidth=1.4, alpha=0.7, label="Original")
        x, y = spectrum_trace(output_spectrum.frequencies, norm_out, scale)
        ax.plot(x, y * PLOT_HEADROOM, color=EQUALIZED, linewidth=1.6, alpha=0.9, label="Equalized")
        leg = ax.legend(loc="upper right", fontsize=7, frameon=False)
        for t in leg.get_texts():
            t.set_color(INK)
    else:
        x, y = spectrum_trace(output_spectrum.frequencies, norm_out, scale)
        if len(x):
            ax.plot(x, y * PLOT_HEADROOM, color=SINGLE, linewidth=1.6)
    return fig


def draw_spectrogram(matrix, times=None, freqs=None, label="Spectrogram"):
    """`matrix` is dB, [time, freq]."""
    fig, ax = _surface()
    if matrix is None or len(matrix) == 0:
        return _placeholder(fig, ax, "No spectrogram data")
    S = np.asarray(matrix, dtype=np.float32).T
    t1 = float(times[-1]) if times is not None and len(times) else S.shape[1]
    f1 = float(freqs[-1]) if freqs is not None and len(freqs) else S.shape[0]
    ax.imshow(S, origin="lower", aspect="auto", cmap="magma",
              extent=[0, t1, 0, f1], vmin=float(np.max(S)) - 90.0, vmax=float(np.max(S)))
    ax.set_xlabel("Time (s)", color=INK_DIM, fontsize=7)
    ax.set_ylabel("Hz", color=INK_DIM, fontsize=7)
    ax.set_title(label, color=INK, fontsize=9, loc="left")
    return fig


def draw_waveform(buffer, playback, label="Signal"):
    fig, ax = _surface(figsize=(6.4, 1.6))
    if buffer is None:
        return _placeholder(fig, ax, "No audio loaded")
    y = buffer.mono()
    sr = buffer.sample_rate
    t0, t1 = playback.visible_window(buffer.duration)
    i0, i1 = int(t0 * sr), max(int(t0 * sr) + 1, int(t1 * sr))
    seg = y[i0:i1]
    # thin out long windows for drawing
    step = max(1, len(seg) // 4000)
    ts = (np.arange(i0, i0 + len(seg)) / sr)[::step]
    ax.plot(ts, seg[::step], color=SINGLE, linewidth=0.8)
    ax.set_xlim(t0, t1)
    peak = max(1.0, float(np.max(np.abs(seg))) if len(seg) else 1.0)
    ax.set_ylim(-peak, peak)
    if t0 <= playback.time <= t1:
        ax.axvline(playback.time, color=PLAYHEAD, linewidth=1.0)
    ax.set_title(label, color=INK, fontsize=9, loc="left")
    return fig


def gain_curve_chart(rows):
    """rows: list of (label, low_hz, high_hz, gain)."""
    df = pd.DataFrame(rows, columns=["Band", "Low (Hz)", "High (Hz)", "Gain"])
    return alt.Chart(df).mark_bar(opacity=0.8).encode(
        x=alt.X("Band:N", sort=None, title=None, axis=alt.Axis(labelAngle=0)),
        y=alt.Y("Gain:Q", scale=alt.Scale(domain=[0, 2]), title="Gain (x)"),
        tooltip=["Band", "Low (Hz)", "High (Hz)", alt.Tooltip("Gain:Q", format=".2f")],
    ).properties(height=140)
