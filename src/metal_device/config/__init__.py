"""Engine configuration."""

from .settings import EngineSettings, EngineSettingsError

__all__ = ["EngineSettings", "EngineSettingsError"]
