import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .atlas import Atlas, Placement, crop
from .errors import PlacementFormatError, PlacementWriteError
from .store import encode_png, read_pixels, write_pixels

logger = logging.getLogger(__name__)

MAP_VERSION = 1


@dataclass
class AtlasImage:
    id: int
    image: str
    width: int
    height: int


@dataclass
class PlacementMap:
    atlases: List[AtlasImage] = field(default_factory=list)
    sprites: Dict[str, Placement] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': MAP_VERSION,
            'atlases': [vars(a).copy() for a in self.atlases],
            'sprites': {name: p.to_dict() for name, p in self.sprites.items()},
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True).encode('utf-8')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlacementMap':
        if not isinstance(data, dict):
            raise PlacementFormatError("Placement map must be a JSON object")
        version = data.get('version')
        if version != MAP_VERSION:
            raise PlacementFormatError(f"Unsupported placement map version {version!r}")
        try:
            atlases = [AtlasImage(id=int(a['id']), image=str(a['image']),
                                  width=int(a['width']), height=int(a['height']))
                       for a in data.get('atlases', [])]
            sprites = {str(name): Placement.from_dict(p) for name, p in data.get('sprites', {}).items()}
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PlacementFormatError(f"Malformed placement map: {e}") from e
        return cls(atlases=atlases, sprites=sprites)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'PlacementMap':
        try:
            parsed = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PlacementFormatError(f"Placement map is not valid JSON: {e}") from e
        return cls.from_dict(parsed)

    @classmethod
    def load(cls, filepath) -> 'PlacementMap':
        with open(filepath, 'rb') as f:
            return cls.from_bytes(f.read())


def build_map(atlases: Sequence[Atlas], image_names: Sequence[str]) -> PlacementMap:
    placement_map = PlacementMap()
    for atlas, image_name in zip(atlases, image_names):
        placement_map.atlases.append(AtlasImage(atlas.id, image_name, atlas.width, atlas.height))
        placement_map.sprites.update(atlas.reverse_index)
    return placement_map


def serialize(atlas: Atlas, image_name: Optional[str] = None) -> Tuple[bytes, bytes]:
    """Encode an atlas as ``(png bytes, map bytes)``."""
    if atlas.image is None:
        raise ValueError(f"Atlas {atlas.id} has no composed image")
    image_name = image_name or f"atlas_{atlas.id}.png"
    return encode_png(atlas.image), build_map([atlas], [image_name]).to_bytes()


def deserialize(data: bytes) -> Dict[str, Placement]:
    return PlacementMap.from_bytes(data).sprites


def output_paths(output_path, count: int) -> Tuple[List[Path], Path]:
    output_path = Path(output_path)
    if output_path.suffix.lower() != '.png':
        output_path = output_path.with_name(output_path.name + '.png')
    if count == 1:
        images = [output_path]
    else:
        images = [output_path.with_name(f"{output_path.stem}_{i}.png") for i in range(count)]
    return images, output_path.with_suffix('.json')


def _remove_quietly(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _move_aside(target: Path) -> str:
    fd, backup = tempfile.mkstemp(prefix=f".{target.name}.", suffix='.bak', dir=str(target.parent))
    os.close(fd)
    try:
        os.replace(target, backup)
    except OSError:
        _remove_quietly(backup)
        raise
    return backup


def write_all_or_nothing(files: Sequence[Tuple[Path, bytes]], remove: Sequence[Path] = ()):
    """Write every file and drop every ``remove`` path, or leave the destination exactly as it was."""
    staged = []
    target = None
    try:
        for target, data in files:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix='.tmp', dir=str(target.parent))
            staged.append((tmp_name, target))
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
    except OSError as e:
        for tmp_name, _ in staged:
            _remove_quietly(tmp_name)
        raise PlacementWriteError(target, e) from e

    backups = []
    committed = []
    try:
        for tmp_name, target in staged:
            if target.exists():
                backups.append((_move_aside(target), target))
            os.replace(tmp_name, target)
            committed.append(target)
        for target in remove:
            if target.exists():
                backups.append((_move_aside(target), target))
    except OSError as e:
        for path in committed:
            _remove_quietly(path)
        for backup, original in backups:
            os.replace(backup, original)
        for tmp_name, _ in staged:
            _remove_quietly(tmp_name)
        raise PlacementWriteError(target, e) from e

    for backup, _ in backups:
        _remove_quietly(backup)


def stale_images(image_paths: Sequence[Path], map_path: Path) -> List[Path]:
    """Atlas images of an earlier run under the same name that the new output does not reuse."""
    folder = map_path.parent
    if not folder.is_dir():
        return []
    pattern = re.compile(rf"{re.escape(map_path.stem)}(_\d+)?\.png", re.IGNORECASE)
    keep = {p.name for p in image_paths}
    return sorted(p for p in folder.iterdir()
                  if p.is_file() and pattern.fullmatch(p.name) and p.name not in keep)


def write_atlases(atlases: Sequence[Atlas], output_path) -> Tuple[List[Path], Path]:
    image_paths, map_path = output_paths(output_path, len(atlases))
    files = []
    for atlas, image_path in zip(atlases, image_paths):
        if atlas.image is None:
            raise ValueError(f"Atlas {atlas.id} has no composed image")
        files.append((image_path, encode_png(atlas.image)))
    placement_map = build_map(atlases, [p.name for p in image_paths])
    files.append((map_path, placement_map.to_bytes()))

    stale = stale_images(image_paths, map_path)
    write_all_or_nothing(files, remove=stale)
    for path in stale:
        logger.info(f"Removed stale atlas image {path}")
    for atlas, image_path in zip(atlases, image_paths):
        logger.info(f"Saved: {image_path} ({atlas.width}x{atlas.height})")
    logger.info(f"Saved: {map_path} ({len(placement_map.sprites)} sprites)")
    return image_paths, map_path


def _safe_target(output_dir: Path, name: str) -> Path:
    parts = PurePosixPath(name).parts
    if not parts or PurePosixPath(name).is_absolute() or '..' in parts:
        raise PlacementFormatError(f"Refusing to unpack sprite outside the output folder: {name}")
    return output_dir.joinpath(*parts)


def unpack(map_path, output_dir) -> List[Path]:
    """Cut every sprite listed in a placement map back out of its atlas."""
    map_path = Path(map_path)
    output_dir = Path(output_dir)
    placement_map = PlacementMap.load(map_path)
    images = {}
    for entry in placement_map.atlases:
        images[entry.id] = read_pixels(map_path.parent / entry.image)

    written = []
    for name, placement in sorted(placement_map.sprites.items()):
        canvas = images.get(placement.atlas_id)
        if canvas is None:
            raise PlacementFormatError(f"Sprite {name} refers to unknown atlas {placement.atlas_id}")
        target = _safe_target(output_dir, name)
        target.parent.mkdir(parents=True, exist_ok=True)
        write_pixels(target, crop(canvas, placement))
        written.append(target)
    logger.info(f"Unpacked {len(written)} sprites from {map_path} into {output_dir}")
    return written
