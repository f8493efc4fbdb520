"""Core module exports"""
from .config import settings, Settings, StorageConfig
from . import exceptions

__all__ = ["settings", "Settings", "StorageConfig", "exceptions"]
