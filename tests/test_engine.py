import json

import numpy as np
import pytest

from spritepacker.engine import SpriteEngine
from spritepacker.errors import (
    AtlasTooSmallError,
    GroupMemberNotFoundError,
    PackCancelled,
    SpritePackerError,
    UnknownGroupError,
)
from spritepacker.placement import PlacementMap
from spritepacker.settings import Settings
from spritepacker.store import read_pixels

from conftest import BLUE, GREEN, RED, solid, write_image


def test_full_workflow(idle_tree, tmp_path):
    engine = SpriteEngine(Settings())
    result = engine.scan(idle_tree)
    assert len(result.sprites) == 4

    changed = engine.check()
    assert [s.name for s in changed["idle_0.png"]] == ["D/idle_0.png"]

    engine.replace_duplicates("idle_0.png", "A/idle_0.png")
    assert engine.changed_groups() == {}

    atlases = engine.pack(tmp_path / "out" / "atlas.png")
    assert len(atlases) == 1
    atlas = atlases[0]
    assert (atlas.width, atlas.height) == (16, 16)
    placement_map = PlacementMap.load(tmp_path / "out" / "atlas.json")
    assert set(placement_map.sprites) == {f"{f}/idle_0.png" for f in "ABCD"}
    assert len(set(placement_map.sprites.values())) == 1


def test_pack_without_resolution_uses_canonical(idle_tree, tmp_path):
    engine = SpriteEngine()
    engine.scan(idle_tree)
    atlas = engine.pack(tmp_path / "atlas.png")[0]
    pixels = read_pixels(tmp_path / "atlas.png")
    placement = atlas.reverse_index["D/idle_0.png"]
    region = pixels[placement.y:placement.y + placement.height, placement.x:placement.x + placement.width]
    assert np.array_equal(region, solid(10, 10, RED))


def test_replace_with_unknown_member(idle_tree):
    engine = SpriteEngine()
    engine.scan(idle_tree)
    with pytest.raises(GroupMemberNotFoundError):
        engine.replace_duplicates("idle_0.png", "E/idle_0.png")
    with pytest.raises(UnknownGroupError):
        engine.replace_duplicates("walk_0.png", "A/idle_0.png")


def test_operations_require_scan():
    engine = SpriteEngine()
    with pytest.raises(SpritePackerError):
        engine.check()


def test_scan_skips_unreadable_files(tmp_path):
    root = tmp_path / "sprites"
    write_image(root / "a.png", solid(4, 4, RED))
    (root / "b.png").write_bytes(b"junk")
    (root / "notes.txt").write_text("not a sprite")
    engine = SpriteEngine()
    result = engine.scan(root)
    assert [s.name for s in result.sprites] == ["a.png"]
    assert len(result.failures) == 1


def scenario_tree(root):
    sizes = [("big.png", 64, 64, RED), ("m1.png", 32, 32, BLUE), ("m2.png", 32, 32, GREEN),
             ("s1.png", 16, 16, RED), ("s2.png", 16, 16, BLUE)]
    for name, w, h, color in sizes:
        write_image(root / name, solid(w, h, color))
    return root


def test_pack_scenario_sizes(tmp_path):
    root = scenario_tree(tmp_path / "sprites")
    engine = SpriteEngine(Settings(max_atlas_width=128, max_atlas_height=64))
    engine.scan(root)
    atlas = engine.pack(tmp_path / "atlas.png")[0]
    assert (atlas.width, atlas.height) == (128, 64)

    small = SpriteEngine(Settings(max_atlas_width=32, max_atlas_height=32))
    small.scan(root)
    with pytest.raises(AtlasTooSmallError):
        small.pack(tmp_path / "small.png")
    assert not (tmp_path / "small.png").exists()
    assert not (tmp_path / "small.json").exists()


def test_pack_is_byte_identical_across_runs(tmp_path):
    root = scenario_tree(tmp_path / "sprites")
    outputs = []
    for run in range(2):
        engine = SpriteEngine()
        engine.scan(root)
        engine.pack(tmp_path / f"run{run}" / "atlas.png")
        outputs.append(((tmp_path / f"run{run}" / "atlas.png").read_bytes(),
                        (tmp_path / f"run{run}" / "atlas.json").read_bytes()))
    assert outputs[0] == outputs[1]


def test_multiple_atlases(tmp_path):
    root = tmp_path / "sprites"
    for i in range(6):
        write_image(root / f"tile_{i}.png", solid(32, 32, (i * 40, 0, 0, 255)))
    engine = SpriteEngine(Settings(max_atlas_width=64, max_atlas_height=64, allow_multiple_atlases=True))
    engine.scan(root)
    atlases = engine.pack(tmp_path / "sheet.png")
    assert len(atlases) == 2
    data = json.loads((tmp_path / "sheet.json").read_text())
    assert {a["image"] for a in data["atlases"]} == {"sheet_0.png", "sheet_1.png"}
    assert {entry["atlas"] for entry in data["sprites"].values()} == {0, 1}


def test_merge_identical_groups_share_a_rectangle(tmp_path):
    root = tmp_path / "sprites"
    write_image(root / "idle.png", solid(8, 8, RED))
    write_image(root / "walk.png", solid(8, 8, RED))
    write_image(root / "jump.png", solid(8, 8, BLUE))
    engine = SpriteEngine(Settings(merge_identical=True))
    engine.scan(root)
    atlas = engine.pack(tmp_path / "atlas.png")[0]
    assert len(atlas.placements) == 2
    assert atlas.reverse_index["idle.png"] == atlas.reverse_index["walk.png"]


def test_progress_and_cancel(tmp_path):
    root = scenario_tree(tmp_path / "sprites")
    engine = SpriteEngine()
    engine.scan(root)
    calls = []
    engine.pack(tmp_path / "atlas.png", progress=lambda done, total: calls.append((done, total)))
    assert calls[-1] == (5, 5)

    with pytest.raises(PackCancelled):
        engine.pack(tmp_path / "cancelled.png", cancelled=lambda: True)
    assert not (tmp_path / "cancelled.png").exists()


def test_unpack_round_trip(idle_tree, tmp_path):
    engine = SpriteEngine()
    engine.scan(idle_tree)
    engine.replace_duplicates("idle_0.png", "A/idle_0.png")
    engine.pack(tmp_path / "atlas.png")
    written = engine.unpack(tmp_path / "atlas.json", tmp_path / "restored")
    assert len(written) == 4
    for folder in "ABCD":
        restored = read_pixels(tmp_path / "restored" / folder / "idle_0.png")
        assert np.array_equal(restored, read_pixels(idle_tree / folder / "idle_0.png"))


def test_pack_single_collection(tmp_path):
    root = tmp_path / "sprites"
    write_image(root / "hero" / "idle-0-1.png", solid(8, 8, RED))
    write_image(root / "hero" / "walk-0-2.png", solid(8, 8, BLUE))
    write_image(root / "enemy" / "idle-0-1.png", solid(16, 16, GREEN))
    engine = SpriteEngine(Settings(grouping="frame_id"))
    engine.scan(root)
    assert engine.collections() == ["enemy", "hero"]

    atlas = engine.pack(tmp_path / "hero.png", collection="hero")[0]
    assert set(atlas.reverse_index) == {"hero/idle-0-1.png", "hero/walk-0-2.png"}
    assert (atlas.width, atlas.height) == (16, 8)
    data = json.loads((tmp_path / "hero.json").read_text())
    assert sorted(data["sprites"]) == ["hero/idle-0-1.png", "hero/walk-0-2.png"]


def test_pack_collection_keeps_only_its_members(idle_tree, tmp_path):
    engine = SpriteEngine()
    engine.scan(idle_tree)
    atlas = engine.pack(tmp_path / "d.png", collection="D")[0]
    assert list(atlas.reverse_index) == ["D/idle_0.png"]


def test_pack_unknown_collection(idle_tree, tmp_path):
    engine = SpriteEngine()
    engine.scan(idle_tree)
    with pytest.raises(SpritePackerError):
        engine.pack(tmp_path / "atlas.png", collection="Z")
    assert not (tmp_path / "atlas.png").exists()
