"""Shared plumbing for resource operations.

Protected-collection checks, the what-if/force gate, variable-name
validation and result shaping live here so every operation applies them
the same way.
"""

from __future__ import annotations

import re
from typing import Any

from ..exceptions import (
    ConfirmationRequiredError,
    InvalidArgumentError,
    ProtectedResourceError,
)
from ..logging_config import get_logger
from ..models import MutationOptions
from ..odata import strip_metadata

logger = get_logger(__name__)

# All Systems, All Users, All User Groups, All Users and User Groups
PROTECTED_COLLECTION_IDS = frozenset({"SMS00001", "SMS00002", "SMS00003", "SMS00004"})

VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def check_protected(collection_id: Any) -> None:
    """Raise if ``collection_id`` is one of the built-in collections."""
    if str(collection_id).upper() in PROTECTED_COLLECTION_IDS:
        raise ProtectedResourceError(str(collection_id).upper())


def should_process(
    options: MutationOptions | None,
    action: str,
    target: Any,
    high_impact: bool = False,
) -> bool:
    """Decide whether a mutating call may be issued.

    Returns False (after logging the intended action) under what-if.

    Raises:
        ConfirmationRequiredError: For a high-impact action without force.
    """
    options = options or MutationOptions()
    if options.what_if:
        logger.info(
            f'What if: Performing the operation "{action}" on target "{target}".',
            extra={"action": action, "target": str(target)},
        )
        return False
    if high_impact and not options.force:
        raise ConfirmationRequiredError(action, str(target))
    logger.info(
        f'Performing the operation "{action}" on target "{target}".',
        extra={"action": action, "target": str(target)},
    )
    return True


def validate_variable_name(name: str) -> str:
    """Return ``name`` if it is a legal variable name.

    Raises:
        InvalidArgumentError: For empty names or names with whitespace or
            other characters outside ``[A-Za-z0-9_-]``.
    """
    if not name or not VARIABLE_NAME_PATTERN.match(name):
        raise InvalidArgumentError(
            f"Invalid variable name '{name}': only letters, digits, '_' and '-' are allowed",
            {"variable_name": name},
        )
    return name


def require_any(label: str, **values: Any) -> dict[str, Any]:
    """Return the supplied (non-None) values.

    Raises:
        InvalidArgumentError: If none was supplied.
    """
    supplied = {k: v for k, v in values.items() if v is not None}
    if not supplied:
        raise InvalidArgumentError(
            f"Nothing to update for {label}: specify at least one of "
            + ", ".join(values)
        )
    return supplied


def clean(data: Any) -> Any:
    return strip_metadata(data)
