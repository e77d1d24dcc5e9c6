"""
High level operations used by the command line and any other front end.

A ``SpriteEngine`` holds the state of one session: the scanned sprites, their
duplicate groups and the settings they were scanned with. Front ends call
``scan``, ``check``, ``replace_duplicates`` and ``pack`` in that order.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from .atlas import Atlas, compose
from .errors import GroupMemberNotFoundError, PackCancelled, SpritePackerError
from .fingerprint import equal, fingerprint
from .grouping import DuplicateGroup, DuplicateGrouper, KeyFunction, collection_of, get_key_function
from .packer import PackRect, pack, pack_many
from .placement import unpack, write_atlases
from .resolution import replace_duplicates
from .settings import Settings
from .sprite import Sprite
from .store import ScanResult, scan

logger = logging.getLogger(__name__)

Progress = Callable[[int, int], None]


class SpriteEngine:
    def __init__(self, settings: Optional[Settings] = None, key_func: Optional[KeyFunction] = None):
        self.settings = settings or Settings()
        self.key_func = key_func or get_key_function(self.settings.grouping)
        self.scan_result: Optional[ScanResult] = None
        self.grouper: Optional[DuplicateGrouper] = None
        self._sources: Dict[str, Sprite] = {}

    @property
    def groups(self) -> List[DuplicateGroup]:
        return list(self._require_grouper().groups)

    def _require_grouper(self) -> DuplicateGrouper:
        if self.grouper is None:
            raise SpritePackerError("No sprites loaded, call scan() first")
        return self.grouper

    def scan(self, root=None, progress: Optional[Progress] = None) -> ScanResult:
        root = root or self.settings.sprites_path
        if not root:
            raise SpritePackerError("No sprites folder configured")
        self.scan_result = scan(root, self.settings.extensions, self.settings.workers, progress)
        self.grouper = DuplicateGrouper(self.scan_result.sprites, self.key_func, self.settings.workers)
        return self.scan_result

    def check(self, progress: Optional[Progress] = None) -> Dict[str, List[Sprite]]:
        return self._require_grouper().check(progress)

    def changed_groups(self) -> Dict[str, List[Sprite]]:
        return {key: changed for key, changed in self.check().items() if changed}

    def group(self, key: str) -> DuplicateGroup:
        return self._require_grouper().group(key)

    def replace_duplicates(self, group: Union[DuplicateGroup, str], chosen: Union[Sprite, str]) -> List[Sprite]:
        if isinstance(group, str):
            group = self.group(group)
        if isinstance(chosen, str):
            member = group.member(chosen)
            if member is None:
                raise GroupMemberNotFoundError(group.key, chosen)
            chosen = member
        return replace_duplicates(group, chosen)

    def collections(self) -> List[str]:
        return sorted({collection_of(m) for group in self._require_grouper().groups for m in group.members})

    def build_rects(self, collection: Optional[str] = None) -> Dict[str, PackRect]:
        """One rectangle per group, sized after the group's canonical sprite.

        With ``collection`` only members inside that top folder are mapped, and
        groups without such members are left out.
        """
        rects: Dict[str, PackRect] = {}
        self._sources = {}
        by_fingerprint: Dict[str, List[str]] = {}
        for order, group in enumerate(self._require_grouper().groups):
            canonical = group.canonical
            names = [m.name for m in group.members if collection is None or collection_of(m) == collection]
            if not names:
                continue
            if self.settings.merge_identical:
                shared = None
                for key in by_fingerprint.get(fingerprint(canonical), []):
                    if equal(self._sources[key], canonical):
                        shared = key
                        break
                if shared is not None:
                    rects[shared].names.extend(names)
                    logger.debug(f"Group {group.key} shares its rectangle with {shared}")
                    continue
                by_fingerprint.setdefault(fingerprint(canonical), []).append(group.key)
            width, height = canonical.size
            rects[group.key] = PackRect(key=group.key, width=width, height=height, order=order, names=names)
            self._sources[group.key] = canonical
        return rects

    def pack(self, output_path,
             progress: Optional[Progress] = None,
             cancelled: Optional[Callable[[], bool]] = None,
             collection: Optional[str] = None) -> List[Atlas]:
        rects = self.build_rects(collection)
        if not rects:
            if collection is not None:
                raise SpritePackerError(f"No sprites in collection {collection!r}")
            raise SpritePackerError("Nothing to pack")
        config = self.settings.pack_config()
        if self.settings.allow_multiple_atlases:
            atlases = pack_many(rects.values(), config)
        else:
            atlases = [pack(rects.values(), config)]

        total = len(rects)
        done = 0

        def pixels_for(rect: PackRect) -> np.ndarray:
            nonlocal done
            if cancelled and cancelled():
                raise PackCancelled("Packing cancelled")
            pixels = self._sources[rect.key].pixels
            done += 1
            if progress:
                progress(done, total)
            return pixels

        for atlas in atlases:
            atlas.image = compose(atlas, pixels_for)
        if cancelled and cancelled():
            raise PackCancelled("Packing cancelled")

        write_atlases(atlases, Path(output_path))
        return atlases

    @staticmethod
    def unpack(map_path, output_dir) -> List[Path]:
        return unpack(map_path, output_dir)
