"""Device lookups (``SMS_R_System``)."""

from __future__ import annotations

from ..models import ById, ByName, ByObject, Device, ResourceKind
from ..resolver import ResourceResolver
from ..session import Session
from .base import clean

KIND = ResourceKind.DEVICE


async def get_device(
    session: Session,
    ref: ByName | ById | ByObject | None = None,
) -> list[Device]:
    """Return the devices matching ``ref`` (all when None).

    Missing devices yield an empty list; duplicate names are all returned.
    """
    matches = await ResourceResolver(session).find(ref, KIND)
    return [Device.model_validate(clean(m)) for m in matches]
