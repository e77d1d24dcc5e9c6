import hashlib

import numpy as np

from .sprite import Sprite

DIGEST_SIZE = 16


def compute_fingerprint(pixels: np.ndarray) -> str:
    """BLAKE2b over the decoded RGBA buffer, prefixed with its dimensions."""
    height, width = pixels.shape[:2]
    digest = hashlib.blake2b(digest_size=DIGEST_SIZE)
    digest.update(f"{width}x{height}:".encode("ascii"))
    digest.update(np.ascontiguousarray(pixels).tobytes())
    return digest.hexdigest()


def fingerprint(sprite: Sprite) -> str:
    cached = sprite.cached_fingerprint
    if cached is not None:
        return cached
    # Decode outside the slot lock, loading errors propagate before hashing
    pixels = sprite.pixels
    return sprite.fingerprint_once(lambda: compute_fingerprint(pixels))


def equal(a: Sprite, b: Sprite) -> bool:
    if a is b:
        return True
    if a.size != b.size:
        return False
    fa, fb = a.cached_fingerprint, b.cached_fingerprint
    if fa is not None and fb is not None and fa != fb:
        return False
    return bool(np.array_equal(a.pixels, b.pixels))
