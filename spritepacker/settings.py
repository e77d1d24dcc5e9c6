import json
import logging
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import List, Dict, Any, Optional

from .errors import SettingsError
from .grouping import KEY_FUNCTIONS
from .packer import PackConfig
from .store import DEFAULT_EXTENSIONS

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = os.path.join(str(Path.home()), ".spritepacker.json")

_FIELD_TYPES = {
    "sprites_path": str,
    "grouping": str,
    "extensions": list,
    "max_atlas_width": int,
    "max_atlas_height": int,
    "power_of_two": bool,
    "growth_step": int,
    "padding": int,
    "allow_multiple_atlases": bool,
    "merge_identical": bool,
    "workers": int,
    "log_level": str,
}


@dataclass
class Settings:
    sprites_path: str = ""
    grouping: str = "filename"
    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    max_atlas_width: int = 4096
    max_atlas_height: int = 4096
    power_of_two: bool = True
    growth_step: int = 0
    padding: int = 0
    allow_multiple_atlases: bool = False
    merge_identical: bool = False
    workers: Optional[int] = None
    log_level: str = "INFO"

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            expected = _FIELD_TYPES[f.name]
            if value is None and f.name == "workers":
                continue
            # bool is an int subclass, keep the two apart
            if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
                raise SettingsError(f"Setting {f.name} must be {expected.__name__}, got {value!r}")
        if not all(isinstance(ext, str) for ext in self.extensions):
            raise SettingsError("extensions must be a list of strings")
        if self.grouping not in KEY_FUNCTIONS:
            raise SettingsError(f"Unknown grouping convention {self.grouping!r}")
        if self.workers is not None and self.workers <= 0:
            raise SettingsError("workers must be a positive number")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(unknown)}")
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except TypeError as e:
            raise SettingsError(f"Invalid settings: {e}") from e

    def pack_config(self) -> PackConfig:
        try:
            return PackConfig(
                max_width=self.max_atlas_width,
                max_height=self.max_atlas_height,
                power_of_two=self.power_of_two,
                growth_step=self.growth_step,
                padding=self.padding,
            )
        except (TypeError, ValueError) as e:
            raise SettingsError(str(e)) from e

    def save(self, filepath: str = DEFAULT_SETTINGS_PATH):
        data = self.to_dict()
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=4)
        logger.info(f"Settings saved to {filepath}")

    @classmethod
    def load(cls, filepath: str = DEFAULT_SETTINGS_PATH) -> 'Settings':
        if not os.path.exists(filepath):
            logger.debug(f"No settings file at {filepath}, using defaults")
            return cls()
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Could not read settings from {filepath}: {e}") from e
        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {filepath} must contain a JSON object")
        return cls.from_dict(data)
