import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np

from .errors import GroupMemberNotFoundError, ImageLoadError
from .grouping import DuplicateGroup
from .sprite import Sprite
from .store import write_pixels

logger = logging.getLogger(__name__)

Writer = Callable[[object, np.ndarray], None]


def _same_content(member: Sprite, source: Sprite) -> bool:
    try:
        return member.size == source.size and bool(np.array_equal(member.pixels, source.pixels))
    except ImageLoadError:
        # Unreadable duplicates are simply overwritten
        return False


def replace_duplicates(group: DuplicateGroup, new_canonical: Sprite, writer: Optional[Writer] = write_pixels) -> List[Sprite]:
    """Copy the chosen member's pixels over every other member of the group.

    Returns the members that were rewritten. ``writer`` persists the new
    buffer to the member's path; pass ``None`` to only update memory.
    """
    if new_canonical not in group:
        raise GroupMemberNotFoundError(group.key, new_canonical.name)
    # Resolve to the group's own object in case an equal-path copy was passed in
    source = next(m for m in group.members if m is new_canonical or m == new_canonical)

    pixels = source.pixels
    rewritten = []
    for member in group.members:
        if member is source:
            continue
        if _same_content(member, source):
            continue
        if writer is not None:
            writer(member.path, pixels)
        member.set_pixels(pixels)
        rewritten.append(member)
        logger.info(f"Replaced sprite at {member.path} with sprite at {source.path}")

    group.canonical = source
    group.changed = []
    return rewritten


def resolve_groups(resolutions: Iterable[Tuple[DuplicateGroup, Sprite]],
                   writer: Optional[Writer] = write_pixels,
                   workers: Optional[int] = None) -> List[Sprite]:
    """Resolve several groups concurrently, one task per group."""
    resolutions = list(resolutions)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda r: replace_duplicates(r[0], r[1], writer), resolutions))
    return [sprite for rewritten in results for sprite in rewritten]
