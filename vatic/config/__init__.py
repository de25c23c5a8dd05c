"""Configuration module for vatic."""

from vatic.config.loader import LoadedConfig, load_config
from vatic.config.schema import ChannelConfig, JobConfig, VaticSettings

__all__ = ["ChannelConfig", "JobConfig", "LoadedConfig", "VaticSettings", "load_config"]
