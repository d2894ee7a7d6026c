"""Collection operations (``SMS_Collection``)."""

from __future__ import annotations

from typing import Any

from .. import odata
from ..exceptions import AlreadyExistsError, InvalidArgumentError, NotFoundError
from ..models import (
    ById,
    ByName,
    ByObject,
    Collection,
    CollectionMember,
    CollectionType,
    MutationOptions,
    RecurInterval,
    RefreshType,
    ResourceKind,
)
from ..resolver import ResourceResolver
from ..session import Session
from .base import check_protected, clean, require_any, should_process

KIND = ResourceKind.COLLECTION
MEMBERSHIP_CLASS = "SMS_FullCollectionMembership"

Reference = ByName | ById | ByObject


def first_object(response: Any) -> dict[str, Any] | None:
    """The single object in a create/update response, with or without ``value``."""
    if isinstance(response, dict) and "value" not in response:
        return response
    items = odata.values(response)
    return items[0] if items else None


def _schedule_body(
    refresh_type: RefreshType, schedule: RecurInterval | None
) -> list[dict[str, Any]] | None:
    periodic = refresh_type in (RefreshType.PERIODIC, RefreshType.BOTH)
    if periodic and schedule is None:
        raise InvalidArgumentError(
            f"Refresh type '{refresh_type.value}' requires a refresh schedule"
        )
    if not periodic and schedule is not None:
        raise InvalidArgumentError(
            f"Refresh type '{refresh_type.value}' does not use a refresh schedule"
        )
    return [schedule.to_api()] if schedule else None


async def get_collection(
    session: Session,
    ref: Reference | None = None,
    collection_type: CollectionType | str | None = None,
) -> list[Collection]:
    """Return the collections matching ``ref`` (all when None).

    Missing collections yield an empty list.
    """
    type_filter = None
    if collection_type is not None:
        type_filter = odata.eq(
            "CollectionType", CollectionType.parse(collection_type).api_value
        )
    matches = await ResourceResolver(session).find(ref, KIND, type_filter)
    return [Collection.model_validate(clean(m)) for m in matches]


async def new_collection(
    session: Session,
    name: str,
    limiting_collection: Reference,
    collection_type: CollectionType | str = CollectionType.DEVICE,
    refresh_type: RefreshType | str = RefreshType.MANUAL,
    comment: str | None = None,
    refresh_schedule: RecurInterval | None = None,
    options: MutationOptions | None = None,
) -> Collection | None:
    """Create a collection.

    Returns:
        The created collection, or None under what-if.

    Raises:
        InvalidArgumentError: For an empty or wildcard name, or a refresh
            schedule that does not fit the refresh type.
        NotFoundError: If the limiting collection does not exist.
        AlreadyExistsError: If a collection with ``name`` exists.
    """
    if not name or not name.strip():
        raise InvalidArgumentError("Collection name must not be empty")
    if odata.has_wildcard(name):
        raise InvalidArgumentError(f"Collection name '{name}' must not contain wildcards")
    collection_type = CollectionType.parse(collection_type)
    refresh_type = RefreshType.parse(refresh_type)
    schedule = _schedule_body(refresh_type, refresh_schedule)

    resolver = ResourceResolver(session)
    limiting = await resolver.resolve_parent(limiting_collection, KIND)
    limiting_type = CollectionType.parse(limiting.get("CollectionType", collection_type))
    if limiting_type != collection_type:
        raise InvalidArgumentError(
            f"Limiting collection '{limiting['CollectionID']}' is a "
            f"{limiting_type.value} collection; cannot limit a {collection_type.value} collection"
        )

    if await resolver.find(ByName(name=name), KIND):
        raise AlreadyExistsError(KIND.label, name)

    if not should_process(options, "New collection", name):
        return None

    body: dict[str, Any] = {
        "Name": name,
        "CollectionType": collection_type.api_value,
        "LimitToCollectionID": limiting["CollectionID"],
        "RefreshType": refresh_type.api_value,
    }
    if comment is not None:
        body["Comment"] = comment
    if schedule is not None:
        body["RefreshSchedule"] = schedule

    response = await session.invoke("POST", odata.class_path(KIND.class_name), body=body)
    created = first_object(response)
    if created is None:
        # some provider versions answer 201 without a body
        created = (await resolver.find(ByName(name=name), KIND) or [None])[0]
    if created is None:
        raise NotFoundError(KIND.label, name)
    session.logger.info(
        "Created collection",
        extra={"collection_id": created.get("CollectionID"), "collection_name": name},
    )
    return Collection.model_validate(clean(created))


async def set_collection(
    session: Session,
    ref: Reference,
    new_name: str | None = None,
    comment: str | None = None,
    refresh_type: RefreshType | str | None = None,
    refresh_schedule: RecurInterval | None = None,
    limiting_collection: Reference | None = None,
    options: MutationOptions | None = None,
) -> Collection | None:
    """Update a collection's mutable properties.

    Raises:
        InvalidArgumentError: If no property is supplied.
        ProtectedResourceError: For the built-in collections.
        NotFoundError: If the collection does not exist.
        AlreadyExistsError: If ``new_name`` is taken by another collection.
    """
    require_any(
        "collection",
        new_name=new_name,
        comment=comment,
        refresh_type=refresh_type,
        refresh_schedule=refresh_schedule,
        limiting_collection=limiting_collection,
    )
    if isinstance(ref, ById):
        check_protected(ref.id)

    resolver = ResourceResolver(session)
    collection_id = await resolver.resolve_one(ref, KIND)
    check_protected(collection_id)
    current = await resolver.ensure_exists(KIND, collection_id)

    body: dict[str, Any] = {}
    if new_name is not None and new_name != current.get("Name"):
        if odata.has_wildcard(new_name) or not new_name.strip():
            raise InvalidArgumentError(f"Invalid collection name '{new_name}'")
        if await resolver.find(ByName(name=new_name), KIND):
            raise AlreadyExistsError(KIND.label, new_name)
        body["Name"] = new_name
    if comment is not None:
        body["Comment"] = comment
    if refresh_type is not None or refresh_schedule is not None:
        effective = RefreshType.parse(
            refresh_type if refresh_type is not None else current.get("RefreshType", 1)
        )
        if refresh_schedule is not None:
            body["RefreshSchedule"] = _schedule_body(effective, refresh_schedule)
        elif effective in (RefreshType.PERIODIC, RefreshType.BOTH) and not current.get(
            "RefreshSchedule"
        ):
            raise InvalidArgumentError(
                f"Refresh type '{effective.value}' requires a refresh schedule"
            )
        body["RefreshType"] = effective.api_value
    if limiting_collection is not None:
        limiting = await resolver.resolve_parent(limiting_collection, KIND)
        if limiting["CollectionID"] == collection_id:
            raise InvalidArgumentError("A collection cannot limit itself")
        body["LimitToCollectionID"] = limiting["CollectionID"]

    target = f"{current.get('Name')} ({collection_id})"
    if not should_process(options, "Set collection", target):
        return None

    if body:
        await session.invoke("PATCH", odata.keyed_path(KIND.class_name, collection_id), body=body)
    updated = await resolver.get_by_id(KIND, collection_id)
    return Collection.model_validate(clean(updated or {**current, **body}))


async def remove_collection(
    session: Session,
    ref: Reference,
    options: MutationOptions | None = None,
    pass_thru: bool = False,
) -> list[Collection] | None:
    """Delete one collection, or every collection matching a wildcard name.

    The protected-collection check runs before anything else, so it holds
    regardless of ``force``.

    Returns:
        The removed collections when ``pass_thru`` is set, otherwise None.

    Raises:
        ProtectedResourceError: If any target is a built-in collection.
        NotFoundError: If an exact name or id does not exist.
        ConfirmationRequiredError: Without ``force``.
    """
    if isinstance(ref, ById):
        check_protected(ref.id)

    resolver = ResourceResolver(session)
    if isinstance(ref, ByName) and odata.has_wildcard(ref.name):
        targets = await resolver.find(ref, KIND)
    else:
        collection_id = await resolver.resolve_one(ref, KIND)
        check_protected(collection_id)
        targets = [await resolver.ensure_exists(KIND, collection_id)]

    for target in targets:
        check_protected(target["CollectionID"])

    removed = []
    for target in targets:
        collection_id = target["CollectionID"]
        label = f"{target.get('Name')} ({collection_id})"
        if not should_process(options, "Remove collection", label, high_impact=True):
            continue
        await session.invoke("DELETE", odata.keyed_path(KIND.class_name, collection_id))
        session.logger.info("Removed collection", extra={"collection_id": collection_id})
        removed.append(Collection.model_validate(clean(target)))

    return removed if pass_thru else None


async def get_collection_member(
    session: Session,
    ref: Reference,
    name: str | None = None,
) -> list[CollectionMember]:
    """List the members of a collection, optionally filtered by name.

    Raises:
        NotFoundError: If the collection cannot be resolved.
    """
    resolver = ResourceResolver(session)
    collection = await resolver.resolve_parent(ref, KIND)
    clause = odata.and_(
        odata.eq("CollectionID", collection["CollectionID"]),
        odata.name_filter("Name", name) if name else None,
    )
    response = await session.invoke(
        "GET", odata.class_path(MEMBERSHIP_CLASS), params=odata.filter_params(clause)
    )
    members = odata.values(response)
    if name and odata.has_wildcard(name):
        members = [m for m in members if odata.wildcard_match(name, m.get("Name"))]
    return [CollectionMember.model_validate(clean(m)) for m in members]


async def invoke_collection_update(
    session: Session,
    ref: Reference,
    options: MutationOptions | None = None,
) -> bool:
    """Ask the site to re-evaluate a collection's membership.

    Returns:
        True when the refresh was requested, False under what-if.
    """
    resolver = ResourceResolver(session)
    collection = await resolver.resolve_parent(ref, KIND)
    collection_id = collection["CollectionID"]
    target = f"{collection.get('Name')} ({collection_id})"
    if not should_process(options, "Update collection membership", target):
        return False
    await session.invoke(
        "POST",
        f"{odata.keyed_path(KIND.class_name, collection_id)}/AdminService.RequestRefresh",
        body={},
    )
    return True
