"""AniFeed: anime catalog feed, title lookup and watchlist state."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["app", "create_app"]


def __getattr__(name: str) -> Any:
    # Deferred so ``app.config`` and friends import without building the API.
    if name in __all__:
        return getattr(import_module("app.main"), name)
    raise AttributeError(f"module 'app' has no attribute {name}")
