"""Configuration loading helpers."""

from extbuilder.lib.config.settings import CONFIG_FILENAME, ExtBuilderConfig, load_config

__all__ = ["CONFIG_FILENAME", "ExtBuilderConfig", "load_config"]
