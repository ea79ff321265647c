# app.py: EQ Studio, equalizer + separation front-end for the DSP backend
import json, logging, uuid

import streamlit as st

from audio_io import encode_wav
from controller import Controller
from dsp import local_spectrogram, spectra_for_display
from equalizer import EqualizerPanel, PanelState
from gateway import BackendError, make_gateway
from plots import draw_spectrogram, draw_spectrum, draw_waveform, gain_curve_chart
from schema import (
    Band, DEBOUNCE_MS, GAIN_LIMITS, GAIN_STEP, Mode, SEPARATION_MODES, SubMode,
)
from separation import SeparationWorkflow, Stage, separation_kind
from storage import BandStore, LocalStore, resolve_store_path
from utils import env_or_secret, safe_name

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)

st.set_page_config(page_title="EQ Studio", page_icon="🎚️", layout="wide")

# -------------------------- global CSS --------------------------
st.markdown("""
<style>
:root{
  --bg:#0f1419; --panel:#141a21; --ink:#e4e4e7; --ink-dim:#94a3b8; --hair:#1e293b;
  --accent:#a855f7; --warn:#fbbf24; --radius:12px;
}
#MainMenu, footer {display:none !important;}
.eq-status{display:flex;align-items:center;gap:8px;padding:6px 10px;font-size:12px;color:var(--ink-dim);
  border-bottom:1px solid var(--hair);white-space:nowrap;overflow:hidden;}
.eq-dot{width:6px;height:6px;border-radius:50%;background:var(--accent);box-shadow:0 0 10px rgba(168,85,247,.7);}
.eq-pill{display:inline-block;padding:2px 8px;border-radius:999px;font-size:11px;border:1px solid var(--hair);}
.eq-pill.ok{color:#bbf7d0;background:rgba(34,197,94,.12);}
.eq-pill.warn{color:#fde68a;background:rgba(251,191,36,.12);}
.eq-card{background:var(--panel);border:1px solid var(--hair);border-radius:var(--radius);padding:12px;}
</style>
""", unsafe_allow_html=True)

# -------------------------- Status ticker helpers --------------------------
def _init_status():
    st.session_state.setdefault("status_steps", [])
    st.session_state.setdefault("status_now", "")

def status_set(text: str):
    _init_status()
    st.session_state["status_now"] = text

def status_push(step: str):
    _init_status()
    st.session_state["status_steps"].append(step)
    st.session_state["status_steps"] = st.session_state["status_steps"][-8:]

def render_status_bar():
    _init_status()
    crumbs = " • ".join(st.session_state["status_steps"])
    st.markdown(
        f"""<div class="eq-status"><span class="eq-dot"></span>
        <span>{st.session_state['status_now'] or 'Ready'}</span>
        <span style="opacity:.45;margin-left:8px;">{crumbs}</span></div>""",
        unsafe_allow_html=True,
    )

# -------------------------- session objects --------------------------
def get_controller() -> Controller:
    if "controller" not in st.session_state:
        gateway = make_gateway()
        store = BandStore(LocalStore(resolve_store_path()))
        st.session_state["controller"] = Controller(gateway, store)
        st.session_state["seen_version"] = 0
        st.session_state["slider_epoch"] = 0
    return st.session_state["controller"]

def _debounce_s() -> float:
    try:
        return float(env_or_secret("EQ_DEBOUNCE_MS", DEBOUNCE_MS)) / 1000.0
    except ValueError:
        return DEBOUNCE_MS / 1000.0

def get_panel(ctrl: Controller) -> EqualizerPanel:
    s = ctrl.state
    panel = st.session_state.get("eq_panel")
    if panel is None:
        panel = EqualizerPanel(
            s.mode, s.custom_bands,
            on_apply=ctrl.apply_equalizer,
            on_gain_change=lambda i, g: ctrl.set_band_gain(i, g) if ctrl.state.mode is Mode.GENERIC else None,
            delay_s=_debounce_s(),
        )
        st.session_state["eq_panel"] = panel
    before = (panel.mode, len(panel.values))
    panel.sync(s.mode, s.custom_bands)
    if before != (panel.mode, len(panel.values)):
        bump_sliders()
    panel.enabled = s.has_file
    return panel

def get_workflow(ctrl: Controller) -> SeparationWorkflow:
    kind = separation_kind(ctrl.state.mode)
    key = f"sep_{kind}"
    if key not in st.session_state:
        wf = SeparationWorkflow(ctrl.gateway, kind)
        if ctrl.state.input_buffer is not None:
            wf.load_input(ctrl.state.input_buffer)
        st.session_state[key] = wf
    return st.session_state[key]

def bump_sliders():
    """Slider widgets are keyed by epoch; a new epoch re-seeds them from the panel."""
    st.session_state["slider_epoch"] = st.session_state.get("slider_epoch", 0) + 1

@st.cache_data(ttl=15, show_spinner=False)
def backend_online(url: str) -> bool:
    try:
        make_gateway(url).health()
        return True
    except BackendError:
        return False

ctrl = get_controller()
state = ctrl.state

# -------------------------- sidebar (mode) --------------------------
with st.sidebar:
    st.markdown("### 🎚️ EQ Studio")
    mode_names = [m.value for m in Mode]
    mode = Mode(st.radio("Mode", mode_names, index=mode_names.index(state.mode.value),
                         format_func=lambda m: m.capitalize()))
    sub_mode = SubMode.NORMAL
    if mode in SEPARATION_MODES:
        ai = st.toggle("AI separation", value=state.sub_mode is SubMode.AI)
        sub_mode = SubMode.AI if ai else SubMode.NORMAL
    if (mode, sub_mode) != (state.mode, state.sub_mode):
        ctrl.change_mode(mode, sub_mode)

    online = backend_online(ctrl.gateway.base_url)
    st.markdown(
        f'<span class="eq-pill {"ok" if online else "warn"}">backend {"online" if online else "offline"}</span>'
        f'<div style="font-size:11px;opacity:.6;margin-top:4px;">{ctrl.gateway.base_url}</div>',
        unsafe_allow_html=True,
    )

render_status_bar()

# -------------------------- top bar --------------------------
top1, top2, top3 = st.columns([0.45, 0.25, 0.30])
with top1:
    upload = st.file_uploader("Upload audio", type=["wav", "flac", "ogg", "mp3", "aiff", "aif"],
                              label_visibility="collapsed", disabled=state.is_processing_equalizer)
with top2:
    show_spec = st.toggle("Show spectrograms", value=state.show_spectrograms)
    if show_spec != state.show_spectrograms:
        ctrl.toggle_spectrograms()
with top3:
    with st.popover("⚙️ Settings"):
        st.download_button("Save settings", json.dumps(ctrl.export_settings(), indent=2),
                           file_name="equalizer-settings.json", mime="application/json")
        settings_file = st.file_uploader("Load settings", type=["json"], key="settings_upload")
        if settings_file is not None and st.session_state.get("settings_sig") != settings_file.file_id:
            st.session_state["settings_sig"] = settings_file.file_id
            try:
                ok, errs = ctrl.load_settings(json.loads(settings_file.getvalue().decode("utf-8")))
            except ValueError as e:
                ok, errs = False, [f"not valid JSON: {e}"]
            if ok:
                bump_sliders()
                st.success("Settings loaded.")
            else:
                st.error("Settings rejected: " + "; ".join(errs))

        if state.mode is Mode.GENERIC:
            st.markdown("**Add band**")
            with st.form("add_band", clear_on_submit=True):
                c1, c2 = st.columns(2)
                low = c1.number_input("Low (Hz)", min_value=0.0, max_value=48000.0, value=0.0, step=50.0)
                high = c2.number_input("High (Hz)", min_value=0.0, max_value=48000.0, value=1000.0, step=50.0)
                gain = st.slider("Gain", *GAIN_LIMITS, value=1.0, step=GAIN_STEP)
                if st.form_submit_button("Add"):
                    ok, errs = ctrl.add_band(Band(low, high, gain))
                    if ok:
                        bump_sliders()
                    else:
                        st.error("; ".join(errs))

# -------------------------- upload --------------------------
if upload is not None and st.session_state.get("uploaded_sig") != upload.file_id:
    st.session_state["uploaded_sig"] = upload.file_id
    name = safe_name(upload.name)
    status_set("Processing audio with backend…"); status_push("Upload")
    with st.spinner("Processing audio with backend… computing FFT and spectrograms"):
        if ctrl.upload_audio(name, upload.getvalue()):
            get_panel(ctrl).reset()
            bump_sliders()
            for kind in ("music", "speech"):
                wf = st.session_state.get(f"sep_{kind}")
                if wf is not None:
                    wf.load_input(state.input_buffer)
            status_set(f"Loaded {name} ✓"); status_push("Loaded ✓")
        else:
            status_set("Upload failed")

err = ctrl.pop_error()
if err:
    st.error(err)

# -------------------------- shared renderers --------------------------
def _on_stop(key: str):
    state.playback.stop()
    st.session_state[f"{key}_pos"] = 0.0

def render_playback_pair(input_buffer, output_buffer, key: str):
    pb = state.playback
    duration = max([b.duration for b in (input_buffer, output_buffer) if b is not None] or [0.0])
    loaded = any(b is not None for b in (input_buffer, output_buffer))
    b1, b2, b3, b4 = st.columns([0.15, 0.15, 0.15, 0.55])
    b1.button("▶ Play", key=f"{key}_play", on_click=pb.play, disabled=not loaded or pb.is_playing)
    b2.button("⏸ Pause", key=f"{key}_pause", on_click=pb.pause, disabled=not pb.is_playing)
    b3.button("⏹ Stop", key=f"{key}_stop", on_click=_on_stop, args=(key,),
              disabled=not (pb.is_playing or pb.is_paused or pb.time > 0))
    b4.caption("Playing" if pb.is_playing else ("Paused" if pb.is_paused else "Stopped"))
    c1, c2, c3, c4 = st.columns([0.4, 0.2, 0.2, 0.2])
    with c1:
        t = st.slider("Position (s)", 0.0, max(duration, 0.01), value=min(pb.time, duration), step=0.1, key=f"{key}_pos")
        pb.seek(t, duration)
    with c2:
        pb.set_speed(st.select_slider("Speed", [0.5, 0.75, 1.0, 1.25, 1.5, 2.0], value=pb.speed if pb.speed in (0.5, 0.75, 1.0, 1.25, 1.5, 2.0) else 1.0, key=f"{key}_speed"))
    with c3:
        pb.set_zoom(st.slider("Zoom", 1.0, 20.0, value=pb.zoom, step=0.5, key=f"{key}_zoom"))
    with c4:
        pb.set_pan(st.slider("Pan", 0.0, 1.0, value=pb.pan, step=0.01, key=f"{key}_pan"))

    # one panel plays at a time: the output when there is one, otherwise the input
    audible = output_buffer if output_buffer is not None else input_buffer
    for label, buf in (("Input Signal", input_buffer), ("Output Signal (Processed)", output_buffer)):
        st.pyplot(draw_waveform(buf, pb, label), clear_figure=True)
        if buf is not None:
            st.audio(encode_wav(buf, pb.speed), format="audio/wav", start_time=int(pb.time),
                     autoplay=pb.is_playing and buf is audible)

def render_spectra(fft_result, input_buffer, output_buffer):
    inp, out = spectra_for_display(fft_result, input_buffer, output_buffer)
    st.pyplot(draw_spectrum(inp, out, "linear", "Fourier Transform"), clear_figure=True)
    st.pyplot(draw_spectrum(inp, out, "audiogram", "Fourier Transform"), clear_figure=True)

def render_spectrograms(fft_result, input_buffer, output_buffer):
    c1, c2 = st.columns(2)
    for col, label, buf, key in ((c1, "Input Spectrogram", input_buffer, "input_spectrogram"),
                                 (c2, "Output Spectrogram", output_buffer, "output_spectrogram")):
        with col:
            matrix = getattr(fft_result, key, None) if fft_result is not None else None
            if matrix:
                fig = draw_spectrogram(matrix, fft_result.spectrogram_times, fft_result.spectrogram_frequencies, label)
            elif buf is not None:
                S, times, freqs = local_spectrogram(buf.mono(), buf.sample_rate)
                fig = draw_spectrogram(S, times, freqs, label)
            else:
                fig = draw_spectrogram(None, label=label)
            st.pyplot(fig, clear_figure=True)

# -------------------------- equalizer --------------------------
def _on_slider(panel: EqualizerPanel, index: int, key: str):
    panel.set_gain(index, st.session_state[key])

def _on_remove(index: int):
    ctrl.remove_band(index)
    bump_sliders()

def _on_reset(panel: EqualizerPanel):
    panel.reset()
    ctrl.reset_bands()
    bump_sliders()

def render_equalizer():
    panel = get_panel(ctrl)
    epoch = st.session_state["slider_epoch"]
    busy = panel.state is not PanelState.IDLE or state.is_processing_equalizer
    st.session_state["eq_busy"] = busy
    hdr1, hdr2 = st.columns([0.8, 0.2])
    with hdr1:
        note = "⏳ Processing…" if busy else ("" if state.has_file else "(Upload audio file to enable)")
        st.markdown(f"**Equalizer Controls** &nbsp; <span style='opacity:.6;font-size:12px'>Avg Gain: "
                    f"{panel.average_gain:.2f}x</span> &nbsp; <span style='font-size:12px'>{note}</span>",
                    unsafe_allow_html=True)
    with hdr2:
        st.button("🔄 Reset", on_click=_on_reset, args=(panel,), use_container_width=True)

    labels = panel.labels()
    if not labels:
        st.caption("No bands. Add one from Settings.")
        return
    cols = st.columns(len(labels))
    for i, (col, (name, rng)) in enumerate(zip(cols, labels)):
        key = f"gain_{epoch}_{i}"
        if key not in st.session_state:
            st.session_state[key] = float(panel.values[i])
        with col:
            st.slider(name, *GAIN_LIMITS, step=GAIN_STEP, key=key, help=rng or None,
                      on_change=_on_slider, args=(panel, i, key), format="%.2fx")
            if rng:
                st.caption(rng)
            if state.mode is Mode.GENERIC:
                st.button("✕", key=f"rm_{epoch}_{i}", on_click=_on_remove, args=(i,))
    ranges = panel.ranges()
    st.altair_chart(gain_curve_chart([(n, lo, hi, g) for (n, _), (lo, hi), g in zip(labels, ranges, panel.values)]),
                    use_container_width=True)

# -------------------------- separation --------------------------
def render_separation():
    wf = get_workflow(ctrl)
    title = "Music Mode" if wf.kind == "music" else "Speech Mode"
    st.markdown(f"### AI Audio Separation: {title}")
    st.caption(f"Loaded: {state.file_name}" if state.has_file
               else 'Please upload an audio file using the upload box above.')

    if wf.stage is Stage.SEPARATED:
        st.markdown("**Separated tracks**")
        for t in wf.tracks:
            c1, c2, c3, c4 = st.columns([0.3, 0.4, 0.15, 0.15])
            c1.markdown(f"**{t.name}**")
            gkey, mkey, skey = f"stem_gain_{t.id}", f"stem_mute_{t.id}", f"stem_solo_{t.id}"
            c2.slider("Gain", *GAIN_LIMITS, value=t.gain, step=GAIN_STEP, key=gkey, label_visibility="collapsed",
                      on_change=lambda tid=t.id, k=gkey: wf.set_gain(tid, st.session_state[k]))
            c3.checkbox("Mute", value=t.muted, key=mkey, on_change=wf.toggle_mute, args=(t.id,))
            c4.checkbox("Solo", value=t.solo, key=skey, on_change=wf.toggle_solo, args=(t.id,))
        render_playback_pair(wf.input_buffer, wf.output_buffer, "sep")
        render_spectra(None, wf.input_buffer, wf.output_buffer)
        if state.show_spectrograms:
            render_spectrograms(None, wf.input_buffer, wf.output_buffer)
        if st.button("↩︎ Start over"):
            wf.load_input(state.input_buffer)
            st.rerun()
        return

    render_playback_pair(wf.input_buffer, None, "sep")
    render_spectra(None, wf.input_buffer, None)
    if st.button("✂️ Separate", disabled=not state.has_file):
        bar = st.progress(0, text="Separating…")
        status_set("Separating…"); status_push("Separate")

        def on_progress(pct, message):
            bar.progress(int(pct), text=message or f"Separating… {pct:.0f}%")

        try:
            wf.separate(state.file_name, state.file_data, session_id=uuid.uuid4().hex[:12], on_progress=on_progress)
            status_set("Separation complete ✓"); status_push("Separated ✓")
        except (BackendError, ValueError) as e:
            status_set("Separation failed")
            st.error(f"Failed to separate audio: {e}")
            return
        st.rerun()

# -------------------------- background results --------------------------
@st.fragment(run_every=1.0)
def watch_results():
    """The debounce timer applies gains off the script thread; redraw when it lands."""
    if state.version != st.session_state.get("seen_version") or state.last_error:
        st.rerun()
    panel = st.session_state.get("eq_panel")
    if st.session_state.get("eq_busy") and panel is not None \
            and panel.state is PanelState.IDLE and not state.is_processing_equalizer:
        st.rerun()

# -------------------------- main --------------------------
st.session_state["eq_busy"] = False
if state.is_loading_audio:
    st.info("⏳ Processing audio with backend…")
elif state.sub_mode is SubMode.AI and state.mode in SEPARATION_MODES:
    # the equalizer is not on screen here; drop any slider change still waiting to apply
    if st.session_state.get("eq_panel") is not None:
        st.session_state["eq_panel"].close()
    render_separation()
else:
    left, right = st.columns(2)
    with left:
        render_playback_pair(state.input_buffer, state.output_buffer, "eq")
    with right:
        render_spectra(state.fft_result, state.input_buffer, state.output_buffer)
    render_equalizer()
    if state.show_spectrograms:
        render_spectrograms(state.fft_result, state.input_buffer, state.output_buffer)

st.session_state["seen_version"] = state.version
watch_results()
