import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import ImageLoadError, UnknownGroupError
from .fingerprint import equal, fingerprint
from .sprite import Sprite

logger = logging.getLogger(__name__)

KeyFunction = Callable[[Sprite], Optional[str]]

_FRAME_ID_RE = re.compile(r"-(\d+)$")


def collection_of(sprite: Sprite) -> str:
    """Top folder under the scan root, empty for sprites at the root itself."""
    parts = PurePosixPath(sprite.name).parts
    return parts[0] if len(parts) > 1 else ""


def key_by_filename(sprite: Sprite) -> Optional[str]:
    """Same file name in different folders, e.g. ``A/idle_0.png`` and ``B/idle_0.png``."""
    return PurePosixPath(sprite.name).name


def key_by_frame_id(sprite: Sprite) -> Optional[str]:
    """Trailing numeric id of ``<clip>-<frame>-<id>.png`` dumps, scoped to the top folder."""
    path = PurePosixPath(sprite.name)
    match = _FRAME_ID_RE.search(path.stem)
    if not match:
        return None
    return f"{collection_of(sprite)}:{int(match.group(1))}"


def key_by_name(sprite: Sprite) -> Optional[str]:
    return sprite.name


KEY_FUNCTIONS: Dict[str, KeyFunction] = {
    "filename": key_by_filename,
    "frame_id": key_by_frame_id,
    "name": key_by_name,
}


def get_key_function(name: str) -> KeyFunction:
    try:
        return KEY_FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown grouping convention {name!r}, "
                         f"expected one of {', '.join(sorted(KEY_FUNCTIONS))}") from None


@dataclass
class DuplicateGroup:
    key: str
    members: List[Sprite]
    canonical: Optional[Sprite] = None
    changed: List[Sprite] = field(default_factory=list)

    def __post_init__(self):
        if not self.members:
            raise ValueError(f"Duplicate group {self.key} has no members")
        if self.canonical is None:
            self.canonical = self.members[0]
        elif self.canonical not in self.members:
            raise ValueError(f"Canonical sprite {self.canonical.name} is not in group {self.key}")

    def __contains__(self, sprite: Sprite) -> bool:
        return any(m is sprite or m == sprite for m in self.members)

    def __len__(self):
        return len(self.members)

    @property
    def duplicates(self) -> List[Sprite]:
        return [m for m in self.members if m is not self.canonical]

    def member(self, name: str) -> Optional[Sprite]:
        for m in self.members:
            if m.name == name or str(m.path) == name:
                return m
        return None

    @property
    def consistent(self) -> bool:
        return not self.changed


class DuplicateGrouper:
    def __init__(self, sprites: Iterable[Sprite], key_func: KeyFunction, workers: Optional[int] = None):
        self.key_func = key_func
        self.workers = workers
        self.failures: List[ImageLoadError] = []
        self.groups: List[DuplicateGroup] = []
        self._by_key: Dict[str, DuplicateGroup] = {}

        buckets: Dict[str, List[Sprite]] = {}
        for sprite in sorted(sprites, key=lambda s: s.name):
            key = key_func(sprite)
            if key is None:
                key = sprite.name
            buckets.setdefault(key, []).append(sprite)

        for key, members in buckets.items():
            group = DuplicateGroup(key=key, members=members)
            self.groups.append(group)
            self._by_key[key] = group
        logger.debug(f"Grouped {sum(len(g) for g in self.groups)} sprites into {len(self.groups)} groups")

    def __len__(self):
        return len(self.groups)

    def __iter__(self):
        return iter(self.groups)

    def group(self, key: str) -> DuplicateGroup:
        try:
            return self._by_key[key]
        except KeyError:
            raise UnknownGroupError(key) from None

    def group_of(self, sprite: Sprite) -> Optional[DuplicateGroup]:
        for group in self.groups:
            if sprite in group:
                return group
        return None

    @staticmethod
    def _scan_group(group: DuplicateGroup) -> Tuple[List[Sprite], Optional[Sprite], List[Sprite], List[ImageLoadError]]:
        readable = []
        errors = []
        for member in group.members:
            try:
                fingerprint(member)
            except ImageLoadError as e:
                errors.append(e)
                continue
            readable.append(member)
        if not readable:
            return [], None, [], errors
        canonical = group.canonical if group.canonical in readable else readable[0]
        changed = [m for m in readable if m is not canonical and not equal(m, canonical)]
        return readable, canonical, changed, errors

    def check(self, progress: Optional[Callable[[int, int], None]] = None) -> Dict[str, List[Sprite]]:
        """Map every group key to the members that differ from the canonical sprite."""
        total = len(self.groups)
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            outcomes = list(pool.map(self._scan_group, self.groups))

        result = {}
        surviving = []
        for done, (group, (readable, canonical, changed, errors)) in enumerate(zip(self.groups, outcomes), start=1):
            for e in errors:
                logger.warning(f"Excluding sprite from group {group.key}: {e}")
                self.failures.append(e)
            if readable:
                group.members = readable
                group.canonical = canonical
                group.changed = changed
                surviving.append(group)
                result[group.key] = list(changed)
                if changed:
                    logger.info(f"Group {group.key}: {len(changed)} of {len(group)} sprites differ from {canonical.name}")
            else:
                self._by_key.pop(group.key, None)
            if progress:
                progress(done, total)
        self.groups = surviving
        return result

    def changed_groups(self) -> Dict[str, List[Sprite]]:
        return {key: changed for key, changed in self.check().items() if changed}
