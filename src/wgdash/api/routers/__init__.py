from . import health, metrics, peers

__all__ = ["health", "metrics", "peers"]
