"""Process configuration and risk policy."""

from sharpedge.config.settings import AppConfig, get_config
from sharpedge.config.policy import RiskPolicy, apply_overrides

__all__ = ["AppConfig", "get_config", "RiskPolicy", "apply_overrides"]
