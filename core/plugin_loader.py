"""
Plugin loader for automatic discovery and registration of connector fetchers.
"""

import importlib
import inspect
import logging
import pathlib
from typing import Dict, Type

from .interfaces import Fetcher

logger = logging.getLogger(__name__)

# Plugin directory relative to this file
PLUGIN_DIR = pathlib.Path(__file__).parent.parent / "plugins"

# Global registry of discovered fetchers, keyed by their ``name``
_REGISTRY: Dict[str, Type[Fetcher]] = {}


def refresh_registry() -> None:
    """Import every module under plugins/ and register Fetcher subclasses."""
    _REGISTRY.clear()

    if not PLUGIN_DIR.exists():
        logger.warning(f"Plugin directory does not exist: {PLUGIN_DIR}")
        return

    module_count = 0
    for py_file in sorted(PLUGIN_DIR.rglob("*.py")):
        # Skip __init__.py and private helpers
        if py_file.name.startswith("_"):
            continue

        relative = py_file.relative_to(PLUGIN_DIR.parent).with_suffix("")
        module_name = ".".join(relative.parts)
        try:
            mod = importlib.import_module(module_name)
        except Exception as e:
            logger.error(f"Failed to load module {module_name}: {e}")
            continue
        module_count += 1

        for _, obj in inspect.getmembers(mod, inspect.isclass):
            if issubclass(obj, Fetcher) and obj is not Fetcher and obj.__module__ == mod.__name__ and obj.name:
                if obj.name in _REGISTRY:
                    logger.warning(f"Duplicate connector name {obj.name!r} in {module_name}, keeping the first")
                    continue
                _REGISTRY[obj.name] = obj
                logger.debug(f"Registered connector: {obj.name} ({module_name}.{obj.__name__})")

    logger.info(f"Plugin discovery complete: {module_count} modules, {len(_REGISTRY)} connectors")


def get(name: str) -> Type[Fetcher]:
    """Get a connector class by source name.

    Raises:
        KeyError: If no connector has that name
    """
    if not _REGISTRY:
        refresh_registry()

    if name not in _REGISTRY:
        raise KeyError(f"Connector '{name}' not found. Available: {sorted(_REGISTRY)}")

    return _REGISTRY[name]


def list_available() -> Dict[str, Type[Fetcher]]:
    """Get a copy of all registered connectors."""
    if not _REGISTRY:
        refresh_registry()
    return _REGISTRY.copy()
