"""
Trading Configuration Management Module

Main Components:
- settings: process settings from the environment / .env
- config_yaml: YAML bot definition loading, saving, and validation utilities
"""

from .config_yaml import (
    build_bot_states,
    create_example_config,
    load_config_from_yaml,
    save_config_to_yaml,
    validate_config_file,
)
from .settings import Settings

__all__ = [
    'Settings',
    'build_bot_states',
    'create_example_config',
    'load_config_from_yaml',
    'save_config_to_yaml',
    'validate_config_file',
]
