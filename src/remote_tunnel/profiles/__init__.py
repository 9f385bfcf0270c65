"""Server profiles, presets and their persistence."""

from .models import PortMapping, PresetService, ServerProfile, StoreData
from .presets import DEFAULT_PRESETS, default_presets, usage_hint
from .store import ProfileStore, parse_target

__all__ = [
    "PortMapping",
    "PresetService",
    "ServerProfile",
    "StoreData",
    "DEFAULT_PRESETS",
    "default_presets",
    "usage_hint",
    "ProfileStore",
    "parse_target",
]
