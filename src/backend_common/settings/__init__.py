"""Shared settings base classes."""

from backend_common.settings.base import BaseServiceSettings

__all__ = ["BaseServiceSettings"]
