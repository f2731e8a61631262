"""Configuration for ctxrecover."""

from ctxrecover.config.settings import RecoverySettings, Settings, load_settings

__all__ = ["RecoverySettings", "Settings", "load_settings"]
