from permadeploy_core.plugins.loader import PluginLoader, PluginNotFoundError

__all__ = ["PluginLoader", "PluginNotFoundError"]
