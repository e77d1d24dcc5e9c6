"""Duplicate sprite detection and texture atlas packing."""

__version__ = "0.1.0"

from .atlas import Atlas, Placement
from .engine import SpriteEngine
from .errors import (
    AtlasTooSmallError,
    GroupMemberNotFoundError,
    ImageLoadError,
    PlacementWriteError,
    SpritePackerError,
)
from .fingerprint import equal, fingerprint
from .grouping import DuplicateGroup, DuplicateGrouper
from .packer import PackConfig, PackRect, pack, pack_many
from .placement import deserialize, serialize
from .resolution import replace_duplicates
from .settings import Settings
from .sprite import Sprite
