"""Dynamic plugin discovery and loading via entry points.

A plugin entry point names a factory called with the loaded
``PermadeployConfig``; it returns the collaborator instance.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import Callable
from typing import TYPE_CHECKING

from permadeploy_core.errors import DeployError
from permadeploy_core.interfaces.indexer import Indexer
from permadeploy_core.interfaces.rewriter import ByteRewriter, PassthroughRewriter
from permadeploy_core.interfaces.transaction import TransactionBuilder

if TYPE_CHECKING:
    from permadeploy_core.config.models import PermadeployConfig


class PluginNotFoundError(DeployError):
    """Raised when a requested plugin cannot be found."""

    def __init__(self, plugin_type: str, name: str | None = None):
        self.plugin_type = plugin_type
        self.name = name
        msg = f"No {plugin_type} plugin found"
        if name:
            msg += f" with name '{name}'"
        super().__init__(msg)


def _default_indexer(config: PermadeployConfig) -> Indexer:
    from permadeploy_core.indexer.http import OrdinalsIndexer

    return OrdinalsIndexer.from_config(config.network)


def _default_rewriter(config: PermadeployConfig) -> ByteRewriter:
    return PassthroughRewriter()


class PluginLoader:
    """Discovers and loads plugins via entry points or config."""

    GROUPS = {
        "builder": "permadeploy.plugins.builder",
        "rewriter": "permadeploy.plugins.rewriter",
        "indexer": "permadeploy.plugins.indexer",
    }

    DEFAULTS: dict[str, Callable[[PermadeployConfig], object]] = {
        "rewriter": _default_rewriter,
        "indexer": _default_indexer,
    }

    def __init__(self, config: PermadeployConfig):
        self._config = config

    def discover(self) -> dict[str, list[str]]:
        """Scan entry_points for registered plugins. Returns {type: [name, ...]}."""
        result: dict[str, list[str]] = {}
        for plugin_type, group in self.GROUPS.items():
            eps = importlib.metadata.entry_points(group=group)
            result[plugin_type] = [ep.name for ep in eps]
        return result

    def _resolve_name(self, plugin_type: str, name: str | None) -> str | None:
        """Resolve plugin name: explicit arg > config > None."""
        if name is not None:
            return name
        return getattr(self._config.plugins, plugin_type, None)

    def _load_from_entry_point(self, plugin_type: str, name: str) -> object | None:
        group = self.GROUPS[plugin_type]
        for ep in importlib.metadata.entry_points(group=group):
            if ep.name == name:
                return ep.load()
        return None

    def _load_plugin(self, plugin_type: str, name: str | None) -> object:
        """Fallback chain: name/config > entry point > built-in default."""
        resolved = self._resolve_name(plugin_type, name)
        if resolved is not None:
            factory = self._load_from_entry_point(plugin_type, resolved)
            if factory is None:
                # Name was explicit but not found -- don't fallback silently
                raise PluginNotFoundError(plugin_type, resolved)
        else:
            factory = self.DEFAULTS.get(plugin_type)
            if factory is None:
                raise PluginNotFoundError(plugin_type)
        if not callable(factory):
            raise PluginNotFoundError(plugin_type, resolved)
        return factory(self._config)

    def load_builder(self, name: str | None = None) -> TransactionBuilder:
        builder = self._load_plugin("builder", name)
        if not isinstance(builder, TransactionBuilder):
            raise PluginNotFoundError("builder", name)
        return builder

    def load_rewriter(self, name: str | None = None) -> ByteRewriter:
        rewriter = self._load_plugin("rewriter", name)
        if not isinstance(rewriter, ByteRewriter):
            raise PluginNotFoundError("rewriter", name)
        return rewriter

    def load_indexer(self, name: str | None = None) -> Indexer:
        indexer = self._load_plugin("indexer", name)
        if not isinstance(indexer, Indexer):
            raise PluginNotFoundError("indexer", name)
        return indexer
