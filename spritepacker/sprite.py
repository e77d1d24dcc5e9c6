import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import numpy as np


@dataclass(eq=False)
class Sprite:
    path: Path
    name: str
    width: int = 0
    height: int = 0
    _pixels: Optional[np.ndarray] = field(default=None, repr=False)
    _fingerprint: Optional[str] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.path = Path(self.path)
        if self._pixels is not None:
            self._adopt(self._pixels)

    def __eq__(self, other):
        if not isinstance(other, Sprite):
            return NotImplemented
        return self.path == other.path

    def __hash__(self):
        return hash(self.path)

    @classmethod
    def from_array(cls, path, pixels: np.ndarray, name: Optional[str] = None) -> 'Sprite':
        path = Path(path)
        return cls(path=path, name=name or path.as_posix(), _pixels=pixels)

    @property
    def loaded(self) -> bool:
        return self._pixels is not None

    @property
    def size(self):
        if self._pixels is None and not (self.width and self.height):
            self.pixels
        return self.width, self.height

    @property
    def pixels(self) -> np.ndarray:
        """Read-only RGBA view, decoded from disk on first access."""
        if self._pixels is None:
            from .store import read_pixels
            self._adopt(read_pixels(self.path))
        return self._pixels

    def set_pixels(self, pixels: np.ndarray):
        self._adopt(pixels)
        self.invalidate_fingerprint()

    def release_pixels(self):
        # Next access decodes the file again
        self._pixels = None

    def _adopt(self, pixels: np.ndarray):
        arr = np.array(pixels, dtype=np.uint8, copy=True)
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"Expected an RGBA buffer of shape (h, w, 4), got {arr.shape}")
        arr.setflags(write=False)
        self._pixels = arr
        self.height, self.width = arr.shape[:2]

    @property
    def cached_fingerprint(self) -> Optional[str]:
        return self._fingerprint

    def fingerprint_once(self, compute: Callable[[], str]) -> str:
        with self._lock:
            if self._fingerprint is None:
                self._fingerprint = compute()
            return self._fingerprint

    def invalidate_fingerprint(self):
        with self._lock:
            self._fingerprint = None
