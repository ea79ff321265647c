import json
import math

from diagnostics import validate_band, validate_bands
from schema import Band, DEFAULT_BAND_EDGES, STORAGE_KEY
from storage import BandStore, LocalStore, resolve_store_path


def test_first_load_seeds_defaults(tmp_path):
    path = tmp_path / "store" / "storage.json"
    bands = BandStore(LocalStore(str(path))).load()
    assert [(b.low, b.high, b.gain) for b in bands] == [(lo, hi, 1.0) for lo, hi in DEFAULT_BAND_EDGES]
    saved = json.loads(path.read_text())
    assert len(saved[STORAGE_KEY]) == 4


def test_saved_bands_survive_a_new_store(tmp_path):
    path = str(tmp_path / "storage.json")
    BandStore(LocalStore(path)).save([Band(20, 300, 0.7)])
    loaded = BandStore(LocalStore(path)).load()
    assert loaded == [Band(20.0, 300.0, 0.7)]


def test_saved_empty_list_is_kept(tmp_path):
    path = str(tmp_path / "storage.json")
    BandStore(LocalStore(path)).save([])
    assert BandStore(LocalStore(path)).load() == []
    assert LocalStore(path).get(STORAGE_KEY) == []


def test_other_keys_are_preserved(tmp_path):
    store = LocalStore(str(tmp_path / "storage.json"))
    store.set("theme", "dark")
    BandStore(store).save([Band(0, 100, 1.0)])
    assert store.get("theme") == "dark"


def test_corrupt_file_falls_back(tmp_path, caplog):
    path = tmp_path / "storage.json"
    path.write_text("{not json")
    bands = BandStore(LocalStore(str(path))).load()
    assert len(bands) == len(DEFAULT_BAND_EDGES)
    assert "Error reading" in caplog.text


def test_invalid_stored_bands_use_defaults(tmp_path, caplog):
    store = LocalStore(str(tmp_path / "storage.json"))
    store.set(STORAGE_KEY, [{"low": 900, "high": 100, "gain": 1.0}])
    bands = BandStore(store).load()
    assert [(b.low, b.high) for b in bands] == DEFAULT_BAND_EDGES
    assert "invalid" in caplog.text


def test_unwritable_path_reports_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    store = LocalStore(str(blocker / "storage.json"))
    assert store.set("k", 1) is False


def test_resolve_store_path(monkeypatch, tmp_path):
    monkeypatch.setenv("EQ_STORE_PATH", str(tmp_path / "env.json"))
    assert resolve_store_path("/explicit.json") == "/explicit.json"
    assert resolve_store_path() == str(tmp_path / "env.json")


def test_validate_band_rules():
    assert validate_band(Band(0, 100, 1.0)) == (True, [])
    assert validate_band({"startFreq": 50, "endFreq": 60})[0]
    assert not validate_band(Band(-1, 100, 1.0))[0]
    assert not validate_band(Band(100, 100, 1.0))[0]
    assert not validate_band(Band(0, 100, 2.5))[0]
    assert not validate_band(Band(0, math.inf, 1.0))[0]
    assert not validate_band({"low": "abc", "high": 5})[0]
    assert not validate_band("0-100")[0]


def test_validate_bands_indexes_errors():
    ok, errs = validate_bands([Band(0, 100, 1.0), Band(5, 1, 1.0)])
    assert not ok
    assert errs[0].startswith("band 1:")
    assert validate_bands("nope") == (False, ["bands is not a list"])
