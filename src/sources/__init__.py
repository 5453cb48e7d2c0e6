"""Source provider registry with lazy loading.

Usage:
    from src.sources import get_provider

    provider = get_provider("forager")
    urls = await provider.search(criteria, page=1)
"""

import importlib
from typing import Any

from src.sources.base import SourceProvider, canonical_profile_url

__all__ = ["SourceProvider", "available_providers", "canonical_profile_url", "get_provider"]

# Lazy registry: maps provider name → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "forager": ("src.sources.forager", "ForagerProvider"),
    "serper": ("src.sources.serper", "SerperProvider"),
}


def get_provider(name: str, **kwargs: Any) -> SourceProvider:
    """Instantiate and return a source provider by name.

    Args:
        name: Provider identifier (forager, serper).
        **kwargs: Passed to the provider constructor (client, timeout, ...).

    Raises:
        ValueError: If the provider name is unknown.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown source provider '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(**kwargs)  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    """Return sorted list of registered provider names."""
    return sorted(_REGISTRY)
