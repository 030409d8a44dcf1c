"""Shared utilities for the voice biomarker pipeline."""

from .audio_io import load_audio, save_audio, resample_linear
from .config_loader import load_config, get_nested_config
from .settings_store import SettingsStore, SqliteSettingsStore, InMemorySettingsStore

__all__ = [
    'load_audio',
    'save_audio',
    'resample_linear',
    'load_config',
    'get_nested_config',
    'SettingsStore',
    'SqliteSettingsStore',
    'InMemorySettingsStore',
]
