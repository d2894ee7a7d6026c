"""Resolution of resource references to Admin Service identifiers.

Operations accept a collection, device or script by name (optionally with
``*``/``?`` wildcards), by id, or as a previously returned object. The
resolver turns those references into the identifiers the API needs,
issuing lookup queries where required.

Example:
    >>> resolver = ResourceResolver(session)
    >>> await resolver.resolve_one(ByName(name="All Systems"), ResourceKind.COLLECTION)
    'SMS00001'
"""

from __future__ import annotations

from typing import Any

from . import odata
from .exceptions import (
    AmbiguousResourceError,
    ApiError,
    InvalidArgumentError,
    NotFoundError,
)
from .logging_config import get_logger
from .models import ById, ByName, ByObject, Id, ResourceKind
from .session import Session

logger = get_logger(__name__)


def _key(kind: ResourceKind, resource_id: Id) -> Id:
    """Device resource ids are integers; accept their string form too.

    Raises:
        InvalidArgumentError: For a device id that is not an integer.
    """
    if kind is not ResourceKind.DEVICE or isinstance(resource_id, int):
        return resource_id
    text = str(resource_id).strip()
    if not text.isdigit():
        raise InvalidArgumentError(f"Device resource id must be an integer, got {resource_id!r}")
    return int(text)


class ResourceResolver:
    """Resolve references against the session's Admin Service.

    Stateless apart from the session it reads from.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    async def find(
        self,
        ref: ByName | ById | ByObject | None,
        kind: ResourceKind,
        extra_filter: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return the raw objects a reference matches.

        A missing id or name yields an empty list. Ambiguous names are
        passed through.

        Args:
            ref: Reference to look up, or None for every object.
            kind: Resource kind.
            extra_filter: Additional OData clause ANDed with the lookup.
        """
        if ref is None:
            return await self._query(kind, extra_filter)
        if isinstance(ref, (ById, ByObject)):
            resource_id = _key(kind, ref.id if isinstance(ref, ById) else ref.id_for(kind))
            found = await self.get_by_id(kind, resource_id)
            if found is None:
                return []
            if extra_filter:
                # keyed lookups ignore $filter; re-query to apply it
                clause = odata.and_(odata.eq(kind.id_property, resource_id), extra_filter)
                return await self._query(kind, clause)
            return [found]

        name = ref.name
        clause = odata.and_(odata.name_filter(kind.name_property, name), extra_filter)
        matches = await self._query(kind, clause)
        if odata.has_wildcard(name):
            matches = [
                m for m in matches
                if odata.wildcard_match(name, m.get(kind.name_property))
            ]
        return matches

    async def resolve_one(self, ref: ByName | ById | ByObject, kind: ResourceKind) -> Id:
        """Resolve a reference to exactly one id.

        Ids pass through unchecked; existence is left to the caller's own
        request.

        Raises:
            InvalidArgumentError: If the name contains a wildcard.
            NotFoundError: If no object has that name.
            AmbiguousResourceError: If several objects share that name.
        """
        if isinstance(ref, ById):
            return _key(kind, ref.id)
        if isinstance(ref, ByObject):
            return _key(kind, ref.id_for(kind))
        if odata.has_wildcard(ref.name):
            raise InvalidArgumentError(
                f"{kind.label} name '{ref.name}' contains a wildcard; "
                f"a single {kind.label.lower()} is required here"
            )

        matches = await self.find(ref, kind)
        ids = [m[kind.id_property] for m in matches]
        if not ids:
            raise NotFoundError(kind.label, ref.name)
        if len(ids) > 1:
            raise AmbiguousResourceError(kind.label, ref.name, ids)
        logger.debug(
            f"Resolved {kind.label} name to id",
            extra={"resource_name": ref.name, "resource_id": ids[0]},
        )
        return ids[0]

    async def resolve_many(
        self, ref: ByName | ById | ByObject, kind: ResourceKind
    ) -> list[Id]:
        """Resolve a reference that may match several objects.

        An empty list is a valid result; callers decide whether it is an
        error. Ids and objects resolve to themselves without a lookup.
        """
        if isinstance(ref, ById):
            return [_key(kind, ref.id)]
        if isinstance(ref, ByObject):
            return [_key(kind, ref.id_for(kind))]
        matches = await self.find(ref, kind)
        return [m[kind.id_property] for m in matches]

    async def get_by_id(self, kind: ResourceKind, resource_id: Id) -> dict[str, Any] | None:
        """Keyed lookup; None when the object does not exist."""
        try:
            response = await self.session.invoke(
                "GET", odata.keyed_path(kind.class_name, _key(kind, resource_id))
            )
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise
        items = odata.values(response)
        return items[0] if items else None

    async def ensure_exists(self, kind: ResourceKind, resource_id: Id) -> dict[str, Any]:
        """Keyed lookup for a required parent scope.

        Raises:
            NotFoundError: If the object does not exist.
        """
        found = await self.get_by_id(kind, resource_id)
        if found is None:
            raise NotFoundError(kind.label, resource_id)
        return found

    async def resolve_parent(
        self, ref: ByName | ById | ByObject, kind: ResourceKind
    ) -> dict[str, Any]:
        """Resolve a parent scope to its object, which must exist."""
        resource_id = await self.resolve_one(ref, kind)
        return await self.ensure_exists(kind, resource_id)

    async def name_of(self, kind: ResourceKind, resource_id: Id) -> str | None:
        """Display name for an id, or None when it does not exist."""
        found = await self.get_by_id(kind, resource_id)
        return found.get(kind.name_property) if found else None

    async def _query(self, kind: ResourceKind, expression: str | None) -> list[dict[str, Any]]:
        response = await self.session.invoke(
            "GET",
            odata.class_path(kind.class_name),
            params=odata.filter_params(expression) or None,
        )
        return odata.values(response)
