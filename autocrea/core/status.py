"""Provider status normalization.

Each provider reports deployment progress in its own vocabulary. The tables
below map every known raw value onto the canonical ``DeploymentStatus``.
Anything not in a table normalizes to ``pending`` so an unexpected provider
value can never push a record into a terminal state.
"""

from types import MappingProxyType
from typing import Mapping

from autocrea.models.deployment import DeploymentStatus, Provider

_S = DeploymentStatus

VERCEL_STATUSES: Mapping[str, DeploymentStatus] = MappingProxyType({
    "QUEUED": _S.PENDING,
    "INITIALIZING": _S.BUILDING,
    "BUILDING": _S.BUILDING,
    "READY": _S.SUCCESS,
    "ERROR": _S.FAILED,
    "CANCELED": _S.CANCELLED,
})

NETLIFY_STATUSES: Mapping[str, DeploymentStatus] = MappingProxyType({
    "new": _S.PENDING,
    "enqueued": _S.PENDING,
    "preparing": _S.BUILDING,
    "prepared": _S.BUILDING,
    "building": _S.BUILDING,
    "uploading": _S.BUILDING,
    "uploaded": _S.BUILDING,
    "processing": _S.BUILDING,
    "ready": _S.SUCCESS,
    "error": _S.FAILED,
    "cancelled": _S.CANCELLED,
    "canceled": _S.CANCELLED,
})

RAILWAY_STATUSES: Mapping[str, DeploymentStatus] = MappingProxyType({
    "QUEUED": _S.PENDING,
    "WAITING": _S.PENDING,
    "INITIALIZING": _S.BUILDING,
    "BUILDING": _S.BUILDING,
    "DEPLOYING": _S.BUILDING,
    "SUCCESS": _S.SUCCESS,
    "FAILED": _S.FAILED,
    "CRASHED": _S.FAILED,
    "SKIPPED": _S.CANCELLED,
    "REMOVING": _S.CANCELLED,
    "REMOVED": _S.CANCELLED,
})

STATUS_TABLES: Mapping[Provider, Mapping[str, DeploymentStatus]] = MappingProxyType({
    Provider.VERCEL: VERCEL_STATUSES,
    Provider.NETLIFY: NETLIFY_STATUSES,
    Provider.RAILWAY: RAILWAY_STATUSES,
})


def normalize_status(provider: Provider | str, raw_status: str | None) -> DeploymentStatus:
    """Map a provider's raw status to the canonical status.

    Exact matches win, then a case-insensitive match. Unknown providers and
    unknown values both fall back to ``pending``.
    """
    if not raw_status:
        return _S.PENDING

    try:
        table = STATUS_TABLES.get(Provider(provider))
    except ValueError:
        table = None
    if table is None:
        return _S.PENDING

    status = table.get(raw_status)
    if status is not None:
        return status

    folded = raw_status.strip().casefold()
    for raw, canonical in table.items():
        if raw.casefold() == folded:
            return canonical

    return _S.PENDING
