import json
import logging
import numpy as np
import pytest

from controller import Controller
from gateway import BackendError, BackendGateway, FFTResult
from schema import Band, Mode, SubMode, DEFAULT_BAND_EDGES
from storage import BandStore, LocalStore


@pytest.fixture
def store(tmp_path):
    return BandStore(LocalStore(str(tmp_path / "storage.json")))


@pytest.fixture
def song(sine, wav_bytes):
    y = sine(440.0, dur=0.25)
    return y, wav_bytes(y)


def _backend(fake_session, response, backend_payload, y, modified_wav=None, status=200):
    def post(url, files, data):
        if status != 200:
            return response(status, {"error": "processing failed"})
        return response(200, backend_payload(y, modified_wav=modified_wav, gain=0.5 if "bands" in data else 1.0))
    session = fake_session(post=post)
    return BackendGateway("http://dsp", session=session), session


def test_upload_resets_gains_and_fetches_spectrum(store, song, fake_session, response, backend_payload):
    y, data = song
    gw, session = _backend(fake_session, response, backend_payload, y)
    ctrl = Controller(gw, store)
    ctrl.set_band_gain(0, 1.7)

    assert ctrl.upload_audio("song.wav", data)

    s = ctrl.state
    assert s.file_name == "song.wav"
    assert s.has_file
    assert [b.gain for b in s.custom_bands] == [1.0] * len(DEFAULT_BAND_EDGES)
    assert [b.gain for b in store.load()] == [1.0] * len(DEFAULT_BAND_EDGES)
    assert "bands" not in session.posts[0]["data"]
    assert s.fft_result is not None and s.fft_result.fft_size == len(y)
    assert s.output_buffer is s.input_buffer
    assert np.allclose(s.input_buffer.channel(0), y, atol=1e-6)
    assert s.version == 1
    assert not s.is_loading_audio


def test_upload_bad_audio_sets_error(store, fake_session):
    ctrl = Controller(BackendGateway(session=fake_session()), store)
    assert not ctrl.upload_audio("junk.wav", b"not audio at all")
    assert not ctrl.state.has_file
    assert "Failed to load audio file" in ctrl.pop_error()
    assert ctrl.pop_error() is None


def test_upload_survives_backend_failure(store, song, fake_session, response, backend_payload):
    y, data = song
    gw, _ = _backend(fake_session, response, backend_payload, y, status=500)
    ctrl = Controller(gw, store)
    assert ctrl.upload_audio("song.wav", data)
    assert ctrl.state.fft_result is None
    assert ctrl.state.input_buffer is not None
    assert "Failed to process audio" in ctrl.state.last_error


def test_upload_in_ai_mode_skips_backend(store, song, fake_session):
    _, data = song
    session = fake_session()
    ctrl = Controller(BackendGateway(session=session), store)
    ctrl.change_mode(Mode.MUSIC, SubMode.AI)
    assert ctrl.upload_audio("song.wav", data)
    assert session.posts == []
    assert ctrl.state.last_error is None


def test_apply_loads_processed_audio(store, song, fake_session, response, backend_payload, buffer_of):
    y, data = song
    gw, session = _backend(fake_session, response, backend_payload, y, modified_wav="modified_song.wav")
    processed = buffer_of(y * 0.5)
    urls = []
    ctrl = Controller(gw, store, audio_loader=lambda url: urls.append(url) or processed)
    ctrl.upload_audio("song.wav", data)

    assert ctrl.apply_equalizer([Band(0, 5000, 0.5)])

    assert json.loads(session.posts[-1]["data"]["bands"]) == [{"low": 0, "high": 5000, "gain": 0.5}]
    assert urls[-1] == "http://dsp/api/download/modified_song.wav"
    assert ctrl.state.output_buffer is processed
    assert ctrl.state.fft_result.has_modifications
    assert ctrl.state.version == 2
    assert not ctrl.state.is_processing_equalizer


def test_apply_without_output_url_resets_to_input(store, song, fake_session, response, backend_payload):
    y, data = song
    gw, _ = _backend(fake_session, response, backend_payload, y)
    ctrl = Controller(gw, store, audio_loader=lambda url: pytest.fail("nothing to load"))
    ctrl.upload_audio("song.wav", data)
    assert ctrl.apply_equalizer([Band(0, 5000, 1.0)])
    assert ctrl.state.output_buffer is ctrl.state.input_buffer


def test_apply_failure_keeps_previous_output(store, song, fake_session, response, backend_payload, buffer_of):
    y, data = song
    gw, session = _backend(fake_session, response, backend_payload, y)
    ctrl = Controller(gw, store)
    ctrl.upload_audio("song.wav", data)
    before = (ctrl.state.output_buffer, ctrl.state.fft_result, ctrl.state.version)

    session.post_handler = lambda url, files, data: response(502, {"error": "bad gateway"})
    assert not ctrl.apply_equalizer([Band(0, 5000, 2.0)])

    assert (ctrl.state.output_buffer, ctrl.state.fft_result, ctrl.state.version) == before
    assert "bad gateway" in ctrl.pop_error()
    assert not ctrl.state.is_processing_equalizer


def test_apply_without_file_is_noop(store, fake_session):
    session = fake_session()
    ctrl = Controller(BackendGateway(session=session), store)
    assert not ctrl.apply_equalizer([Band(0, 100, 1.0)])
    assert session.posts == []


def test_overlapping_apply_is_dropped(store, song, caplog):
    _, data = song
    nested = []

    class ReentrantGateway:
        session = None

        def upload_and_process_fft(self, file_name, data, bands):
            raise BackendError("offline")

        def update_equalizer_gains(self, file_name, data, bands):
            nested.append(ctrl.apply_equalizer(bands))
            raise BackendError("slow backend gave up")

    ctrl = Controller(ReentrantGateway(), store)
    ctrl.upload_audio("song.wav", data)
    assert not ctrl.apply_equalizer([Band(0, 100, 1.0)])
    assert nested == [False]
    assert "Already processing equalizer update" in caplog.text


def test_band_editing_persists(store, fake_session):
    ctrl = Controller(BackendGateway(session=fake_session()), store)
    ok, errs = ctrl.add_band(Band(100, 200, 1.2))
    assert ok and errs == []
    assert len(store.load()) == len(DEFAULT_BAND_EDGES) + 1

    ok, errs = ctrl.add_band(Band(500, 100, 1.0))
    assert not ok and errs

    ctrl.remove_band(0)
    assert store.load()[0].low == DEFAULT_BAND_EDGES[1][0]

    ctrl.reset_bands()
    assert [(b.low, b.high) for b in store.load()] == DEFAULT_BAND_EDGES


def test_reset_restores_unity_gains(store, fake_session):
    ctrl = Controller(BackendGateway(session=fake_session()), store)
    ctrl.set_band_gain(1, 1.8)
    ctrl.set_band_gain(3, 0.2)
    assert [b.gain for b in store.load()] == [1.0, 1.8, 1.0, 0.2]

    ctrl.reset_bands()

    expected = [(lo, hi, 1.0) for lo, hi in DEFAULT_BAND_EDGES]
    assert [(b.low, b.high, b.gain) for b in store.load()] == expected
    assert [(b.low, b.high, b.gain) for b in ctrl.state.custom_bands] == expected


def test_equalizer_result_for_replaced_upload_is_ignored(store, sine, wav_bytes, backend_payload, buffer_of, caplog):
    old, new = sine(440.0, dur=0.25), sine(880.0, dur=0.25)

    class SlowGateway:
        session = None

        def download_url(self, name):
            return f"http://dsp/api/download/{name}"

        def upload_and_process_fft(self, file_name, data, bands):
            y = new if file_name == "new.wav" else old
            return FFTResult.from_payload(backend_payload(y), self.download_url)

        def update_equalizer_gains(self, file_name, data, bands):
            # the user uploads another file while this request is still out
            ctrl.upload_audio("new.wav", wav_bytes(new))
            return FFTResult.from_payload(backend_payload(old, modified_wav="old_eq.wav", gain=0.5),
                                          self.download_url)

    ctrl = Controller(SlowGateway(), store, audio_loader=lambda url: buffer_of(old * 0.5))
    ctrl.upload_audio("old.wav", wav_bytes(old))

    with caplog.at_level(logging.INFO):
        assert not ctrl.apply_equalizer([Band(0, 5000, 0.5)])

    s = ctrl.state
    assert s.file_name == "new.wav"
    assert s.output_buffer is s.input_buffer
    assert np.allclose(s.input_buffer.channel(0), new, atol=1e-6)
    assert not s.fft_result.has_modifications
    assert s.fft_result.fft_size == len(new)
    assert s.version == 2
    assert s.last_error is None
    assert not s.is_processing_equalizer
    assert "superseded" in caplog.text


def test_upload_stops_playback(store, song, fake_session, response, backend_payload):
    y, data = song
    gw, _ = _backend(fake_session, response, backend_payload, y)
    ctrl = Controller(gw, store)
    ctrl.state.playback.play()
    ctrl.state.playback.seek(0.2, 1.0)
    ctrl.upload_audio("song.wav", data)
    pb = ctrl.state.playback
    assert (pb.is_playing, pb.is_paused, pb.time) == (False, False, 0.0)


def test_settings_round_trip(store, fake_session):
    ctrl = Controller(BackendGateway(session=fake_session()), store)
    ok, errs = ctrl.load_settings({
        "mode": "animal",
        "showSpectrograms": True,
        "customBands": [{"startFreq": 20, "endFreq": 300, "gain": 0.8}],
    })
    assert ok, errs
    exported = ctrl.export_settings()
    assert exported["mode"] == "animal"
    assert exported["showSpectrograms"] is True
    assert exported["customBands"] == [{"low": 20.0, "high": 300.0, "gain": 0.8}]


def test_bad_settings_are_reported(store, fake_session):
    ctrl = Controller(BackendGateway(session=fake_session()), store)
    ok, errs = ctrl.load_settings({"mode": "opera", "customBands": [{"low": 10, "high": 5}]})
    assert not ok
    assert any("unknown mode" in e for e in errs)
    assert any("band 0" in e for e in errs)
    assert ctrl.state.mode is Mode.GENERIC
    assert ctrl.load_settings([1, 2]) == (False, ["settings is not a JSON object"])
