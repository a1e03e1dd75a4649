"""Configuration module for the CRM team lifecycle service."""
from .settings import TeamConfig, load_settings

__all__ = ["TeamConfig", "load_settings"]
