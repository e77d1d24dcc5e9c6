from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import numpy as np

if TYPE_CHECKING:
    from .packer import PackRect


@dataclass(frozen=True)
class Placement:
    atlas_id: int
    x: int
    y: int
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {'atlas': self.atlas_id, 'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, int]) -> 'Placement':
        return cls(atlas_id=int(data['atlas']), x=int(data['x']), y=int(data['y']),
                   width=int(data['width']), height=int(data['height']))


@dataclass
class Atlas:
    id: int
    width: int
    height: int
    placements: List['PackRect'] = field(default_factory=list)
    image: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    @property
    def reverse_index(self) -> Dict[str, Placement]:
        # Every sprite name sharing a rectangle points at the same placement
        index = {}
        for rect in self.placements:
            placement = Placement(self.id, rect.x, rect.y, rect.width, rect.height)
            for name in rect.names:
                index[name] = placement
        return index

    def placement_of(self, key: str) -> 'PackRect':
        for rect in self.placements:
            if rect.key == key:
                return rect
        raise KeyError(key)


def compose(atlas: Atlas, pixels_for: Callable[['PackRect'], np.ndarray]) -> np.ndarray:
    """Paste every placed rectangle's pixels onto a transparent RGBA canvas."""
    canvas = np.zeros((atlas.height, atlas.width, 4), dtype=np.uint8)
    for rect in atlas.placements:
        pixels = pixels_for(rect)
        if pixels.shape[:2] != (rect.height, rect.width):
            raise ValueError(f"Pixels for {rect.key} are {pixels.shape[1]}x{pixels.shape[0]}, "
                             f"expected {rect.width}x{rect.height}")
        canvas[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width] = pixels
    return canvas


def crop(canvas: np.ndarray, placement: Placement) -> np.ndarray:
    return canvas[placement.y:placement.y + placement.height, placement.x:placement.x + placement.width].copy()
