"""Snapshot of the models available on the server.

The snapshot is a single tuple that is replaced wholesale on every
successful refresh; readers always see either the old or the new list,
never a partial merge. Until the first successful load the registry is
"uninitialised" and treats every model name as available, leaving the
check to the server.
"""

from typing import Optional

from structured_ollama.client.models import ModelInfo


class ModelRegistry:
    """Last known list of installed models."""

    def __init__(self):
        self._models: tuple[ModelInfo, ...] = ()
        self._initialized = False

    @property
    def models(self) -> tuple[ModelInfo, ...]:
        return self._models

    @property
    def initialized(self) -> bool:
        return self._initialized

    def replace(self, models: list[ModelInfo]) -> None:
        """Swap in a new snapshot. An empty list leaves the old one in place."""
        if not models:
            return
        self._models = tuple(models)
        self._initialized = True

    def is_available(self, name: str) -> bool:
        if not self._initialized:
            return True
        return any(model.name == name for model in self._models)

    def get(self, name: str) -> Optional[ModelInfo]:
        return next((model for model in self._models if model.name == name), None)


def format_size(size: Optional[int]) -> str:
    """Human readable byte count.

    Example:
        >>> format_size(7_548_000_000)
        '7.03 GB'
    """
    if size is None:
        return "N/A"
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024 or unit == "GB":
            return f"{value:.2f} {unit}"
    return f"{value:.2f} GB"
