import logging
from collections import namedtuple
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Tuple

from .atlas import Atlas
from .errors import AtlasTooSmallError

logger = logging.getLogger(__name__)

# Free region inside a bin
Rectangle = namedtuple("Rectangle", ["x", "y", "width", "height"])


@dataclass
class PackRect:
    key: str
    width: int
    height: int
    order: int = 0
    names: List[str] = field(default_factory=list)
    x: Optional[int] = None
    y: Optional[int] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Rectangle {self.key} has invalid size {self.width}x{self.height}")
        if not self.names:
            self.names = [self.key]

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def placed(self) -> bool:
        return self.x is not None and self.y is not None

    def overlaps(self, other: 'PackRect') -> bool:
        return (self.x < other.x + other.width and other.x < self.x + self.width
                and self.y < other.y + other.height and other.y < self.y + self.height)


@dataclass
class PackConfig:
    max_width: int = 4096
    max_height: int = 4096
    power_of_two: bool = True
    # Pixels added per growth step when not using powers of two; 0 doubles the side
    growth_step: int = 0
    padding: int = 0

    def __post_init__(self):
        if self.max_width <= 0 or self.max_height <= 0:
            raise ValueError("Maximum atlas size must be positive")
        if self.growth_step < 0 or self.padding < 0:
            raise ValueError("growth_step and padding must not be negative")


def next_power_of_2(n: int) -> int:
    p = 1
    while p < n:
        p *= 2
    return p


def prev_power_of_2(n: int) -> int:
    p = 1
    while p * 2 <= n:
        p *= 2
    return p


def size_limits(config: PackConfig) -> Tuple[int, int]:
    """Largest atlas size allowed by the config, rounded down to powers of two when required."""
    if config.power_of_two:
        return prev_power_of_2(config.max_width), prev_power_of_2(config.max_height)
    return config.max_width, config.max_height


def sort_rects(rects: Iterable[PackRect]) -> List[PackRect]:
    """Largest area first, then taller first, then encounter order."""
    return sorted(rects, key=lambda r: (-r.area, -r.height, r.order))


class GuillotineBin:
    """Best-area-fit guillotine packer over a single fixed-size bin."""

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.free_rectangles: List[Rectangle] = [Rectangle(0, 0, width, height)]

    def insert(self, width: int, height: int) -> Optional[Tuple[int, int]]:
        best_idx = None
        best_score = None
        for idx, free_rect in enumerate(self.free_rectangles):
            if free_rect.width < width or free_rect.height < height:
                continue
            score = (free_rect.width * free_rect.height - width * height, free_rect.y, free_rect.x)
            if best_score is None or score < best_score:
                best_score = score
                best_idx = idx

        if best_idx is None:
            return None

        free_rect = self.free_rectangles.pop(best_idx)
        self.free_rectangles.extend(self._split(free_rect, width, height))
        self.free_rectangles = self._merge(self.free_rectangles)
        return free_rect.x, free_rect.y

    @staticmethod
    def _split(free_rect: Rectangle, width: int, height: int) -> List[Rectangle]:
        leftover_w = free_rect.width - width
        leftover_h = free_rect.height - height
        # Split along the shorter leftover axis so the larger remainder stays whole
        if leftover_w < leftover_h:
            right = Rectangle(free_rect.x + width, free_rect.y, leftover_w, height)
            bottom = Rectangle(free_rect.x, free_rect.y + height, free_rect.width, leftover_h)
        else:
            right = Rectangle(free_rect.x + width, free_rect.y, leftover_w, free_rect.height)
            bottom = Rectangle(free_rect.x, free_rect.y + height, width, leftover_h)
        return [r for r in (right, bottom) if r.width > 0 and r.height > 0]

    @staticmethod
    def _try_merge(rect1: Rectangle, rect2: Rectangle) -> Optional[Rectangle]:
        if rect1.y == rect2.y and rect1.height == rect2.height:
            if rect1.x + rect1.width == rect2.x:
                return Rectangle(rect1.x, rect1.y, rect1.width + rect2.width, rect1.height)
            if rect2.x + rect2.width == rect1.x:
                return Rectangle(rect2.x, rect1.y, rect1.width + rect2.width, rect1.height)
        if rect1.x == rect2.x and rect1.width == rect2.width:
            if rect1.y + rect1.height == rect2.y:
                return Rectangle(rect1.x, rect1.y, rect1.width, rect1.height + rect2.height)
            if rect2.y + rect2.height == rect1.y:
                return Rectangle(rect1.x, rect2.y, rect1.width, rect1.height + rect2.height)
        return None

    @classmethod
    def _merge(cls, rectangles: List[Rectangle]) -> List[Rectangle]:
        rectangles = sorted(rectangles, key=lambda r: (r.y, r.x))
        changed = True
        while changed:
            changed = False
            for i in range(len(rectangles)):
                for j in range(i + 1, len(rectangles)):
                    merged = cls._try_merge(rectangles[i], rectangles[j])
                    if merged:
                        rectangles[i] = merged
                        del rectangles[j]
                        changed = True
                        break
                if changed:
                    break
        return sorted(rectangles, key=lambda r: (r.y, r.x))


def _place_all(rects: List[PackRect], width: int, height: int, padding: int) -> Optional[List[PackRect]]:
    # Padding goes right of and below each rect, the extra bin margin keeps it off the far edges
    bin_ = GuillotineBin(width + padding, height + padding)
    placed = []
    for rect in rects:
        pos = bin_.insert(rect.width + padding, rect.height + padding)
        if pos is None:
            return None
        placed.append(replace(rect, names=list(rect.names), x=pos[0], y=pos[1]))
    return placed


def _used_extent(placed: List[PackRect]) -> Tuple[int, int]:
    return (max(r.x + r.width for r in placed), max(r.y + r.height for r in placed))


def _grow(value: int, limit: int, config: PackConfig) -> int:
    if config.power_of_two or not config.growth_step:
        grown = value * 2
    else:
        grown = value + config.growth_step
    # The last step lands on the limit itself
    return min(grown, limit)


def _candidate_sizes(rects: List[PackRect], config: PackConfig):
    max_width, max_height = size_limits(config)
    width = max(r.width for r in rects)
    height = max(r.height for r in rects)
    if config.power_of_two:
        width, height = next_power_of_2(width), next_power_of_2(height)
    if width > max_width or height > max_height:
        return

    while True:
        yield width, height
        # Grow the shorter side, width on ties, and fall back to the other side at the limit
        if width <= height and width < max_width:
            width = _grow(width, max_width, config)
        elif height < max_height:
            height = _grow(height, max_height, config)
        elif width < max_width:
            width = _grow(width, max_width, config)
        else:
            return


def _finish(placed: List[PackRect], width: int, height: int, config: PackConfig, atlas_id: int) -> Atlas:
    if not config.power_of_two:
        width, height = _used_extent(placed)
    return Atlas(id=atlas_id, width=width, height=height, placements=placed)


def pack(rects: Iterable[PackRect], config: Optional[PackConfig] = None, atlas_id: int = 0) -> Atlas:
    config = config or PackConfig()
    ordered = sort_rects(rects)
    if not ordered:
        raise ValueError("No rectangles to pack")

    total_area = sum((r.width + config.padding) * (r.height + config.padding) for r in ordered)
    for width, height in _candidate_sizes(ordered, config):
        if (width + config.padding) * (height + config.padding) < total_area:
            continue
        placed = _place_all(ordered, width, height, config.padding)
        if placed is not None:
            atlas = _finish(placed, width, height, config, atlas_id)
            logger.info(f"Packed {len(placed)} rectangles into {atlas.width}x{atlas.height} atlas")
            return atlas
        logger.debug(f"{len(ordered)} rectangles do not fit into {width}x{height}, growing")

    max_width, max_height = size_limits(config)
    biggest = max(ordered, key=lambda r: max(r.width - max_width, r.height - max_height))
    if biggest.width > max_width or biggest.height > max_height:
        raise AtlasTooSmallError(max_width, max_height, biggest.width, biggest.height)
    raise AtlasTooSmallError(max_width, max_height)


def pack_many(rects: Iterable[PackRect], config: Optional[PackConfig] = None) -> List[Atlas]:
    """Pack into as many atlases of at most the maximum size as needed."""
    config = config or PackConfig()
    max_width, max_height = size_limits(config)
    remaining = sort_rects(rects)
    for rect in remaining:
        if rect.width > max_width or rect.height > max_height:
            raise AtlasTooSmallError(max_width, max_height, rect.width, rect.height)

    atlases = []
    while remaining:
        try:
            atlases.append(pack(remaining, config, atlas_id=len(atlases)))
            break
        except AtlasTooSmallError:
            pass

        # Fill one maximum size atlas and carry the rest over
        bin_ = GuillotineBin(max_width + config.padding, max_height + config.padding)
        placed, rest = [], []
        for rect in remaining:
            pos = bin_.insert(rect.width + config.padding, rect.height + config.padding)
            if pos is None:
                rest.append(rect)
            else:
                placed.append(replace(rect, names=list(rect.names), x=pos[0], y=pos[1]))
        atlases.append(_finish(placed, max_width, max_height, config, len(atlases)))
        logger.info(f"Atlas {len(atlases) - 1} full with {len(placed)} rectangles, {len(rest)} left")
        remaining = rest
    return atlases
