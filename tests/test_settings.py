import json

import pytest

from spritepacker.errors import SettingsError
from spritepacker.settings import Settings


def test_missing_file_gives_defaults(tmp_path):
    settings = Settings.load(str(tmp_path / "missing.json"))
    assert settings == Settings()
    assert settings.grouping == "filename"


def test_save_and_load_round_trip(tmp_path):
    path = str(tmp_path / "settings.json")
    settings = Settings(sprites_path="/sprites", grouping="frame_id", padding=2, power_of_two=False)
    settings.save(path)
    assert Settings.load(path) == settings


def test_unknown_keys_are_ignored(tmp_path, caplog):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"padding": 3, "Dark": True, "Language": "en-US"}))
    with caplog.at_level("WARNING"):
        settings = Settings.load(str(path))
    assert settings.padding == 3
    assert "Dark" in caplog.text


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{oops")
    with pytest.raises(SettingsError):
        Settings.load(str(path))


def test_non_object_file_raises(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2]")
    with pytest.raises(SettingsError):
        Settings.load(str(path))


def test_invalid_grouping():
    with pytest.raises(SettingsError):
        Settings(grouping="colour")


def test_pack_config():
    config = Settings(max_atlas_width=256, max_atlas_height=128, padding=1).pack_config()
    assert (config.max_width, config.max_height, config.padding) == (256, 128, 1)
    with pytest.raises(SettingsError):
        Settings(padding=-1).pack_config()


@pytest.mark.parametrize("data", [
    {"max_atlas_width": "big"},
    {"padding": 1.5},
    {"power_of_two": "yes"},
    {"workers": True},
    {"extensions": ".png"},
    {"extensions": [".png", 3]},
])
def test_wrongly_typed_values_raise(tmp_path, data):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(data))
    with pytest.raises(SettingsError):
        Settings.load(str(path))


def test_workers_may_be_null(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"workers": None, "max_atlas_width": 512}))
    settings = Settings.load(str(path))
    assert settings.workers is None
    assert settings.pack_config().max_width == 512
