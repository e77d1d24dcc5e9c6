import logging
import os
import tempfile
import threading
import weakref
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import numpy as np
from PIL import Image

from .errors import ImageLoadError, ImageWriteError
from .sprite import Sprite

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ('.png', '.bmp', '.tga')

# Locks live only while some writer holds a reference
_path_locks = weakref.WeakValueDictionary()
_path_locks_guard = threading.Lock()


def path_lock(path) -> threading.Lock:
    key = os.path.normcase(os.path.abspath(str(path)))
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


def read_pixels(path) -> np.ndarray:
    try:
        with Image.open(path) as img:
            rgba = img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageLoadError(path, e) from e
    return np.asarray(rgba, dtype=np.uint8)


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels)).save(buffer, format="PNG")
    return buffer.getvalue()


def write_pixels(path, pixels: np.ndarray):
    """Write an RGBA buffer to ``path``, replacing the file in one step."""
    path = Path(path)
    fmt = Image.registered_extensions().get(path.suffix.lower(), "PNG")
    image = Image.fromarray(np.ascontiguousarray(pixels))
    with path_lock(path):
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, 'wb') as f:
                image.save(f, format=fmt)
            os.replace(tmp_name, path)
        except (OSError, ValueError) as e:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise ImageWriteError(path, e) from e
    logger.debug(f"Wrote {pixels.shape[1]}x{pixels.shape[0]} image to {path}")


def relative_name(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def load_sprite(path, root=None) -> Sprite:
    path = Path(path)
    name = relative_name(path, Path(root)) if root is not None else path.name
    return Sprite.from_array(path, read_pixels(path), name=name)


def list_images(root, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> List[Path]:
    root = Path(root)
    valid_extensions = {ext.lower() for ext in extensions}
    files = [p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in valid_extensions]
    return sorted(files, key=lambda p: relative_name(p, root))


@dataclass
class ScanResult:
    root: Path
    sprites: List[Sprite] = field(default_factory=list)
    failures: List[ImageLoadError] = field(default_factory=list)


def scan(root,
         extensions: Iterable[str] = DEFAULT_EXTENSIONS,
         workers: Optional[int] = None,
         progress: Optional[Callable[[int, int], None]] = None) -> ScanResult:
    root = Path(root)
    if not root.is_dir():
        raise ImageLoadError(root, "not a directory")

    files = list_images(root, extensions)
    result = ScanResult(root=root)
    total = len(files)

    def work(path: Path) -> Union[Sprite, ImageLoadError]:
        try:
            return load_sprite(path, root)
        except ImageLoadError as e:
            return e

    with ThreadPoolExecutor(max_workers=workers) as pool:
        for done, outcome in enumerate(pool.map(work, files), start=1):
            if isinstance(outcome, ImageLoadError):
                logger.warning(f"Skipping unreadable sprite: {outcome}")
                result.failures.append(outcome)
            else:
                result.sprites.append(outcome)
            if progress:
                progress(done, total)

    logger.info(f"Scanned {root}: {len(result.sprites)} sprites, {len(result.failures)} failures")
    return result
