"""Configuration models and parser for tether.yaml."""

from tether.config.models import BridgeConfig, ModelConfig
from tether.config.parser import ConfigError, load_config

__all__ = [
    "BridgeConfig",
    "ConfigError",
    "ModelConfig",
    "load_config",
]
