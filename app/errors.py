"""
Error taxonomy for the feed service.

- ``NotFound``  : the entity does not exist in the store of record.
  A normal outcome on lookups; surfaced to clients as 404.
- ``StoreError``: connectivity, constraint or query failure on the
  relational store.  Fatal on the write path (500).
- ``CacheError``: any key-value store failure.  Never fatal: callers
  treat it as a miss or skip the advisory write.
"""


class FeedError(Exception):
    """Base class for all feed service errors."""


class NotFound(FeedError):
    def __init__(self, kind: str, external_id: str) -> None:
        super().__init__(f"{kind} {external_id!r} not found")
        self.kind = kind
        self.external_id = external_id


class StoreError(FeedError):
    pass


class CacheError(FeedError):
    pass
