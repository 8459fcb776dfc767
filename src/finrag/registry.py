"""Name → implementation registry with lazy import and a singleton cache.

Backends are registered as ``(key, module_path, class_name)`` so optional
dependencies are only imported when that backend is selected.
"""

from __future__ import annotations

import importlib
import logging
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Registry(Generic[T]):
    """Lazily constructed, optionally cached implementations of one interface."""

    def __init__(self, kind: str, entries: list[tuple[str, str, str]]):
        self.kind = kind
        self._entries = entries
        self._cache: dict[str, T] = {}

    def get(self, name: str, **kwargs) -> T:
        """Instantiate ``name``. Instances built without kwargs are cached."""
        key = name.lower()

        if not kwargs and key in self._cache:
            return self._cache[key]

        for reg_key, module_path, cls_name in self._entries:
            if reg_key == key:
                mod = importlib.import_module(module_path)
                cls = getattr(mod, cls_name)
                instance = cls(**kwargs)
                if not kwargs:
                    self._cache[key] = instance
                logger.debug("Created %s '%s' (%s)", self.kind, key, cls_name)
                return instance

        raise ValueError(f"Unknown {self.kind} '{name}'. Available: {self.available()}")

    def available(self) -> list[str]:
        return [k for k, _, _ in self._entries]

    def clear(self) -> None:
        self._cache.clear()
