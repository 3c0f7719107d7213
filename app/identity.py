"""
Identity schemes: how a row's externally visible id relates to its
internal key (the auto-increment primary key used for ordering).

``uuid``
    A random UUID4 string is generated before the insert and stored in
    ``external_id``.  The internal key is only reachable through a
    lookup, so callers resolve it via the identifier-mapping cache entry
    or the store.

``integer``
    The external id is the decimal form of the primary key itself.  It is
    sortable, so a pagination cursor converts to the internal key without
    any I/O.

The store and the cache key builders only talk to ``IdentityScheme``, so
switching schemes is a configuration change.
"""
import uuid
from abc import ABC, abstractmethod

from sqlalchemy import false

from app.config import settings

# Upper bound of the INTEGER primary key column.
_MAX_KEY = 2**31 - 1


class IdentityScheme(ABC):
    name: str = ""
    sortable: bool = False

    @abstractmethod
    def new_external_id(self) -> str | None:
        """Id to store at insert time, or None when derived from the key."""

    @abstractmethod
    def external_id(self, row) -> str:
        """External id of a persisted ``Post`` / ``Comment`` row."""

    @abstractmethod
    def matches(self, model, external_id: str):
        """SQL where-clause selecting *model* rows with *external_id*."""

    def local_key(self, external_id: str) -> int | None:
        """Internal key derivable without I/O, else None."""
        return None


class UUIDScheme(IdentityScheme):
    name = "uuid"

    def new_external_id(self) -> str:
        return str(uuid.uuid4())

    def external_id(self, row) -> str:
        return row.external_id

    def matches(self, model, external_id: str):
        return model.external_id == external_id


class IntegerScheme(IdentityScheme):
    name = "integer"
    sortable = True

    def new_external_id(self) -> None:
        return None

    def external_id(self, row) -> str:
        return str(row.id)

    def matches(self, model, external_id: str):
        key = self.local_key(external_id)
        if key is None:
            # Not an integer: can never name a row.
            return false()
        return model.id == key

    def local_key(self, external_id: str) -> int | None:
        if not (external_id.isascii() and external_id.isdigit()):
            return None
        key = int(external_id)
        # Only the canonical spelling names a row ("7", never "007"), so
        # every post has exactly one set of cache keys.
        if key > _MAX_KEY or str(key) != external_id:
            return None
        return key


_SCHEMES: dict[str, IdentityScheme] = {
    scheme.name: scheme for scheme in (UUIDScheme(), IntegerScheme())
}


def get_identity_scheme(name: str | None = None) -> IdentityScheme:
    """Return the scheme named *name*, defaulting to ``settings.IDENTITY_SCHEME``."""
    name = name or settings.IDENTITY_SCHEME
    try:
        return _SCHEMES[name]
    except KeyError:
        raise ValueError(
            f"Unknown identity scheme {name!r}; expected one of {sorted(_SCHEMES)}"
        ) from None
