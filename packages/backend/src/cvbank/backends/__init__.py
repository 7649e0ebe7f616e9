"""Backend registry — pluggable storage + identity implementations.

Learn: Exactly one backend is active per process. The registry maps a
name to the module that builds it, and only the selected module is
imported, so the sql driver stack isn't loaded for the local backend, nor
httpx plumbing for sql, and so on.

    backend = get_backend("local", settings, storage)
    await backend.store.read(user_id, Collection.TOOLS)
"""

import importlib
import inspect
from typing import Any

from cvbank.backends.base import Backend, EntityStore, IdentityProvider
from cvbank.config import Settings
from cvbank.storage import KeyValueStore

__all__ = [
    "Backend",
    "EntityStore",
    "IdentityProvider",
    "get_backend",
    "list_backends",
    "register_backend",
]

# ─── Registry ──────────────────────────────────────────────

_BACKENDS: dict[str, str] = {
    "local": "cvbank.backends.local",
    "sql": "cvbank.backends.sql",
    "rest": "cvbank.backends.rest",
}


async def get_backend(
    name: str, settings: Settings, storage: KeyValueStore, **options: Any
) -> Backend:
    """Build the named backend.

    Raises ValueError if the backend is not registered. Extra options are
    passed to the module's create_backend (e.g. an httpx transport).
    """
    module_path = _BACKENDS.get(name)
    if not module_path:
        available = ", ".join(sorted(_BACKENDS.keys()))
        raise ValueError(f"Unknown backend '{name}'. Available: {available}")
    module = importlib.import_module(module_path)
    backend = module.create_backend(settings, storage, **options)
    if inspect.isawaitable(backend):
        backend = await backend
    return backend


def list_backends() -> list[str]:
    """List registered backend names."""
    return sorted(_BACKENDS.keys())


def register_backend(name: str, module_path: str) -> None:
    """Register a custom backend module exposing create_backend()."""
    _BACKENDS[name] = module_path
