"""Configuration module for miniagi."""

from miniagi.config.loader import load_config
from miniagi.config.schema import Config

__all__ = ["Config", "load_config"]
