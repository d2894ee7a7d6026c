"""Collection membership rules.

Rules are read from the ``CollectionRules`` property of the keyed
``SMS_Collection`` instance and changed through the
``AdminService.AddMembershipRule`` / ``AdminService.DeleteMembershipRule``
actions, each taking a ``collectionRule`` object typed by ``@odata.type``.
"""

from __future__ import annotations

from typing import Any

from .. import odata
from ..exceptions import AlreadyExistsError, InvalidArgumentError, NotFoundError
from ..models import (
    ById,
    ByName,
    ByObject,
    DirectRule,
    ExcludeRule,
    IncludeRule,
    MutationOptions,
    QueryRule,
    ResourceKind,
    RuleType,
    rule_from_api,
    rule_target,
)
from ..resolver import ResourceResolver
from ..session import Session
from .base import should_process

Reference = ByName | ById | ByObject
Rule = DirectRule | QueryRule | IncludeRule | ExcludeRule

COLLECTION = ResourceKind.COLLECTION
DEVICE = ResourceKind.DEVICE


def _action_path(collection_id: str, action: str) -> str:
    return f"{odata.keyed_path(COLLECTION.class_name, collection_id)}/AdminService.{action}"


def _rules_of(collection: dict[str, Any]) -> list[Rule]:
    collection_id = collection["CollectionID"]
    return [
        rule_from_api(raw, collection_id)
        for raw in collection.get("CollectionRules") or []
    ]


def _same_target(a: Rule, b: Rule) -> bool:
    if a.rule_type != b.rule_type:
        return False
    if isinstance(a, QueryRule):
        return (a.rule_name or "").lower() == (b.rule_name or "").lower()
    return str(rule_target(a)).lower() == str(rule_target(b)).lower()


async def get_membership_rule(
    session: Session,
    collection_ref: Reference,
    rule_type: RuleType | str | None = None,
    rule_name: str | None = None,
) -> list[Rule]:
    """List a collection's membership rules.

    Args:
        collection_ref: The parent collection.
        rule_type: Only rules of this type.
        rule_name: Only rules whose name matches (wildcards allowed).

    Raises:
        NotFoundError: If the collection cannot be resolved.
    """
    wanted = RuleType.parse(rule_type) if rule_type is not None else None
    collection = await ResourceResolver(session).resolve_parent(collection_ref, COLLECTION)
    rules = _rules_of(collection)
    if wanted is not None:
        rules = [r for r in rules if r.rule_type == wanted]
    if rule_name:
        rules = [r for r in rules if odata.wildcard_match(rule_name, r.rule_name)]
    return rules


async def add_membership_rule(
    session: Session,
    collection_ref: Reference,
    rule: Rule,
    options: MutationOptions | None = None,
) -> Rule | None:
    """Add ``rule`` to a collection.

    Returns:
        The rule scoped to its collection, or None under what-if.

    Raises:
        NotFoundError: If the collection cannot be resolved.
        AlreadyExistsError: If an equivalent rule is present.
        InvalidArgumentError: If an include/exclude rule points at the
            collection itself.
    """
    resolver = ResourceResolver(session)
    collection = await resolver.resolve_parent(collection_ref, COLLECTION)
    collection_id = collection["CollectionID"]

    if isinstance(rule, (IncludeRule, ExcludeRule)) and rule_target(rule) == collection_id:
        raise InvalidArgumentError(
            f"Collection '{collection_id}' cannot include or exclude itself"
        )
    for existing in _rules_of(collection):
        if _same_target(existing, rule):
            raise AlreadyExistsError(
                f"{rule.rule_type} membership rule", rule.rule_name or rule_target(rule)
            )

    target = f"{collection.get('Name')} ({collection_id})"
    action = f"Add {rule.rule_type} membership rule '{rule.rule_name or rule_target(rule)}'"
    if not should_process(options, action, target):
        return None

    await session.invoke(
        "POST",
        _action_path(collection_id, "AddMembershipRule"),
        body={"collectionRule": rule.to_api()},
    )
    return rule.model_copy(update={"collection_id": collection_id})


async def add_direct_rule(
    session: Session,
    collection_ref: Reference,
    device_ref: Reference,
    rule_name: str | None = None,
    options: MutationOptions | None = None,
) -> DirectRule | None:
    """Add a direct rule for one device; the rule is named after the device."""
    resolver = ResourceResolver(session)
    resource_id = await resolver.resolve_one(device_ref, DEVICE)
    device = await resolver.ensure_exists(DEVICE, resource_id)
    rule = DirectRule(
        resource_id=int(resource_id),
        rule_name=rule_name or device.get("Name") or str(resource_id),
    )
    return await add_membership_rule(session, collection_ref, rule, options)


async def add_query_rule(
    session: Session,
    collection_ref: Reference,
    rule_name: str,
    query_expression: str,
    options: MutationOptions | None = None,
) -> QueryRule | None:
    if not rule_name or not query_expression:
        raise InvalidArgumentError("A query rule needs both a rule name and a query expression")
    rule = QueryRule(rule_name=rule_name, query_expression=query_expression)
    return await add_membership_rule(session, collection_ref, rule, options)


async def add_include_rule(
    session: Session,
    collection_ref: Reference,
    include_ref: Reference,
    options: MutationOptions | None = None,
) -> IncludeRule | None:
    resolver = ResourceResolver(session)
    included = await resolver.resolve_parent(include_ref, COLLECTION)
    rule = IncludeRule(
        include_collection_id=included["CollectionID"],
        rule_name=included.get("Name"),
    )
    return await add_membership_rule(session, collection_ref, rule, options)


async def add_exclude_rule(
    session: Session,
    collection_ref: Reference,
    exclude_ref: Reference,
    options: MutationOptions | None = None,
) -> ExcludeRule | None:
    resolver = ResourceResolver(session)
    excluded = await resolver.resolve_parent(exclude_ref, COLLECTION)
    rule = ExcludeRule(
        exclude_collection_id=excluded["CollectionID"],
        rule_name=excluded.get("Name"),
    )
    return await add_membership_rule(session, collection_ref, rule, options)


async def remove_membership_rule(
    session: Session,
    collection_ref: Reference,
    rule_type: RuleType | str,
    rule_name: str | None = None,
    target_ref: Reference | None = None,
    options: MutationOptions | None = None,
    pass_thru: bool = False,
) -> list[Rule] | None:
    """Remove the rules of one type matching a name and/or a target.

    ``rule_name`` may be a wildcard. ``target_ref`` is the device of a
    direct rule or the collection of an include/exclude rule.

    Returns:
        The removed rules when ``pass_thru`` is set, otherwise None.

    Raises:
        InvalidArgumentError: If neither ``rule_name`` nor ``target_ref``
            is given, or ``target_ref`` is used with a query rule.
        NotFoundError: If an exact selection matches nothing.
    """
    wanted = RuleType.parse(rule_type)
    if not rule_name and target_ref is None:
        raise InvalidArgumentError("Specify a rule name or a rule target to remove")
    if target_ref is not None and wanted == RuleType.QUERY:
        raise InvalidArgumentError("Query rules are selected by rule name only")

    resolver = ResourceResolver(session)
    collection = await resolver.resolve_parent(collection_ref, COLLECTION)
    collection_id = collection["CollectionID"]

    targets: set[str] | None = None
    if target_ref is not None:
        kind = DEVICE if wanted == RuleType.DIRECT else COLLECTION
        targets = {str(t).lower() for t in await resolver.resolve_many(target_ref, kind)}

    matches = []
    for rule in _rules_of(collection):
        if rule.rule_type != wanted:
            continue
        if rule_name and not odata.wildcard_match(rule_name, rule.rule_name):
            continue
        if targets is not None and str(rule_target(rule)).lower() not in targets:
            continue
        matches.append(rule)

    is_batch = bool(rule_name and odata.has_wildcard(rule_name)) or (
        isinstance(target_ref, ByName) and odata.has_wildcard(target_ref.name)
    )
    if not matches and not is_batch:
        raise NotFoundError(
            f"{wanted.value} membership rule",
            rule_name or (str(target_ref) if target_ref is not None else ""),
        )

    removed = []
    label = f"{collection.get('Name')} ({collection_id})"
    for rule in matches:
        action = f"Remove {wanted.value} membership rule '{rule.rule_name or rule_target(rule)}'"
        if not should_process(options, action, label, high_impact=True):
            continue
        await session.invoke(
            "POST",
            _action_path(collection_id, "DeleteMembershipRule"),
            body={"collectionRule": rule.to_api()},
        )
        removed.append(rule)
    return removed if pass_thru else None
