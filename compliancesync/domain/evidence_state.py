from __future__ import annotations

from enum import Enum

from compliancesync.core.errors import InvalidTransitionError


class EvidenceStatus(str, Enum):
    UPLOADING = "uploading"
    ACTIVE = "active"
    DELETED = "deleted"


class EvidenceOperation(str, Enum):
    COMPLETE_UPLOAD = "complete_upload"
    UPDATE = "update"
    DELETE = "delete"


# Legal (operation, from) -> to transitions; anything missing is rejected.
_TRANSITIONS: dict[tuple[EvidenceOperation, EvidenceStatus], EvidenceStatus] = {
    (EvidenceOperation.COMPLETE_UPLOAD, EvidenceStatus.UPLOADING): EvidenceStatus.ACTIVE,
    (EvidenceOperation.UPDATE, EvidenceStatus.ACTIVE): EvidenceStatus.ACTIVE,
    (EvidenceOperation.DELETE, EvidenceStatus.ACTIVE): EvidenceStatus.DELETED,
    # Abandoned uploads can be discarded before completion.
    (EvidenceOperation.DELETE, EvidenceStatus.UPLOADING): EvidenceStatus.DELETED,
}


def transition(current: str, operation: EvidenceOperation) -> EvidenceStatus:
    # Resolve the next status or refuse the operation for the current status.
    try:
        status = EvidenceStatus(current)
    except ValueError as exc:
        raise InvalidTransitionError(f"Unknown evidence status: {current}") from exc
    target = _TRANSITIONS.get((operation, status))
    if target is None:
        raise InvalidTransitionError(
            f"Cannot {operation.value.replace('_', ' ')} evidence in status {status.value}",
            current_status=status.value,
        )
    return target


def counts_toward_requirements(status: str) -> bool:
    # Only active evidence contributes to requirement evidence counts.
    return status == EvidenceStatus.ACTIVE.value
