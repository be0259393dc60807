"""
Base Service Class.

Every gatekeeping service needs the same two collaborators: the tunables
from ``AppConfig`` (throttle window, retry budget, route paths, cache
keys) and a structured logger.  Services extend this and add their own
dependencies via ``__init__``.
"""

from __future__ import annotations

from vital.config import AppConfig
from vital.logger import StructuredLogger


class BaseService:
    """Base class for all service classes. Provides config and a logger."""

    def __init__(self, config: AppConfig, logger: StructuredLogger) -> None:
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger
