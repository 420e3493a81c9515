"""fedimod: webhook-driven automod for federated social instances."""

__version__ = "0.1.0"
