"""Configuration module for the billing core."""

from edubill.config.logging import configure_logging
from edubill.config.settings import Settings, get_settings
from edubill.config.templates_loader import load_schedule_templates

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "load_schedule_templates",
]
