import json

import pytest

from plotmap.config import DEFAULT_IMAGE_URL, DEFAULT_LAND_CORNERS
from plotmap.errors import ConfigurationError, PersistenceError
from plotmap.schemas.map_config import MapConfig
from plotmap.services.map_config_store import (
    MapConfigStore,
    default_map_config,
    project_key,
    sanitize_project_id,
)
from plotmap.utils.corners import canonicalize, corners_to_list

from conftest import SQUARE_ROLES


@pytest.fixture
def store(tmp_path):
    return MapConfigStore(tmp_path / "map_configs")


def _config(**overrides):
    data = {"imageUrl": "s3:maps/site.png", "corners": SQUARE_ROLES, "opacity": 0.8}
    data.update(overrides)
    return MapConfig(**data)


def test_missing_project_gets_default(store):
    assert store.load("site-1") is None

    config, is_default = store.load_or_default("site-1")

    assert is_default is True
    assert config.image_url == DEFAULT_IMAGE_URL
    assert [list(c) for c in config.corners] == corners_to_list(canonicalize(DEFAULT_LAND_CORNERS))
    assert config.opacity == 1.0


def test_default_uses_layout_image_when_given(store):
    config, _ = store.load_or_default("site-1", "s3:layouts/site-1.png")
    assert config.image_url == "s3:layouts/site-1.png"
    assert default_map_config().image_url == DEFAULT_IMAGE_URL


def test_save_then_load(store):
    store.save("site-1", _config(flipH=True))

    loaded, is_default = store.load_or_default("site-1")

    assert is_default is False
    assert loaded == _config(flipH=True)


def test_saved_file_uses_wire_names(store):
    store.save("site-1", _config())
    payload = json.loads((store.root / "site-1.json").read_text(encoding="utf-8"))
    assert payload["imageUrl"] == "s3:maps/site.png"
    assert payload["flipH"] is False
    assert "image_url" not in payload


def test_save_replaces_whole_document(store):
    store.save("site-1", _config(flipH=True, opacity=0.3))
    store.save("site-1", _config())
    loaded = store.load("site-1")
    assert loaded.flip_h is False
    assert loaded.opacity == 0.8
    assert not list(store.root.glob("*.tmp"))


def test_corrupt_file_is_a_persistence_error(store):
    store.root.mkdir(parents=True)
    (store.root / "site-1.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        store.load("site-1")


def test_invalid_document_is_a_persistence_error(store):
    store.root.mkdir(parents=True)
    (store.root / "site-1.json").write_text(
        json.dumps({"imageUrl": "/x.png", "corners": [[0, 0]]}), encoding="utf-8"
    )
    with pytest.raises(PersistenceError):
        store.load_or_default("site-1")


def test_unwritable_root_is_a_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(PersistenceError):
        MapConfigStore(blocker).save("site-1", _config())


def test_delete(store):
    store.save("site-1", _config())
    assert store.delete("site-1") is True
    assert store.delete("site-1") is False
    assert store.load("site-1") is None


@pytest.mark.parametrize("raw, clean", [
    ("Site-1", "site-1"),
    ("../../etc/passwd", "etcpasswd"),
    ("a b_c", "ab_c"),
    ("", "project"),
    ("///", "project"),
])
def test_sanitize_project_id(raw, clean):
    assert sanitize_project_id(raw) == clean


@pytest.mark.parametrize("project_id", ["Tower-A", "tower a", "../tower-a", ""])
def test_ids_changed_by_sanitizing_are_rejected(store, project_id):
    with pytest.raises(ConfigurationError):
        store.save(project_id, _config())
    with pytest.raises(ConfigurationError):
        store.load(project_id)
    assert not store.root.exists()


def test_similar_ids_do_not_share_a_file(store):
    store.save("tower-a", _config())
    with pytest.raises(ConfigurationError):
        store.save("Tower-A", _config(opacity=0.1))
    assert store.load("tower-a") == _config()


def test_project_key_accepts_clean_ids():
    assert project_key("1718034200123") == "1718034200123"
    assert project_key("tower_a-2") == "tower_a-2"
