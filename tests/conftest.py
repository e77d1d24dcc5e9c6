from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from spritepacker.sprite import Sprite

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
GREEN = (0, 255, 0, 255)


def solid(width, height, color):
    arr = np.zeros((height, width, 4), dtype=np.uint8)
    arr[...] = color
    return arr


def write_image(path, pixels, mode="RGBA"):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.fromarray(pixels)
    if mode != "RGBA":
        image = image.convert(mode)
    image.save(path)
    return path


def make_sprite(name, width=10, height=10, color=RED):
    return Sprite.from_array(Path("/virtual") / name, solid(width, height, color), name=name)


@pytest.fixture
def idle_tree(tmp_path):
    """Folders A, B and C hold a red idle_0.png, folder D holds a blue one."""
    root = tmp_path / "sprites"
    for folder in "ABC":
        write_image(root / folder / "idle_0.png", solid(10, 10, RED))
    write_image(root / "D" / "idle_0.png", solid(10, 10, BLUE))
    return root
