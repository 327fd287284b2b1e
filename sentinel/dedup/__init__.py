from .cache import DedupCache, DedupEntry

__all__ = ["DedupCache", "DedupEntry"]
