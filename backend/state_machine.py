from errors import ConflictError
from models import AssignmentStatus, BedStatus, TransferStatus

ADMINISTRATIVE_STATES: set[BedStatus] = {
    BedStatus.AVAILABLE,
    BedStatus.RESERVED,
    BedStatus.MAINTENANCE,
    BedStatus.CLEANING,
}

# Statuses an administrator may set directly. OCCUPIED is produced only by
# admission or transfer completion, BLOCKED only by deactivation.
VALID_STATUS_TRANSITIONS: dict[BedStatus, list[BedStatus]] = {
    state: sorted(ADMINISTRATIVE_STATES - {state}, key=lambda s: s.value)
    for state in ADMINISTRATIVE_STATES
}
VALID_STATUS_TRANSITIONS[BedStatus.OCCUPIED] = sorted(ADMINISTRATIVE_STATES, key=lambda s: s.value)
VALID_STATUS_TRANSITIONS[BedStatus.BLOCKED] = []

VALID_TRANSFER_TRANSITIONS: dict[TransferStatus, list[TransferStatus]] = {
    TransferStatus.PENDING: [TransferStatus.SCHEDULED, TransferStatus.COMPLETED, TransferStatus.CANCELLED],
    TransferStatus.SCHEDULED: [TransferStatus.PENDING, TransferStatus.COMPLETED, TransferStatus.CANCELLED],
    TransferStatus.COMPLETED: [],
    TransferStatus.CANCELLED: [],
}

TERMINAL_ASSIGNMENT_STATES: set[AssignmentStatus] = {
    AssignmentStatus.DISCHARGED,
    AssignmentStatus.TRANSFERRED,
}

POST_DISCHARGE_STATUS = BedStatus.CLEANING
REACTIVATED_STATUS = BedStatus.MAINTENANCE


def validate_status_change(
    current: BedStatus,
    new: BedStatus,
    *,
    has_active_assignment: bool,
) -> bool:
    """Validate an administrative bed status change; raise ConflictError otherwise."""
    if new == current:
        return True

    if new == BedStatus.OCCUPIED:
        raise ConflictError(
            "Beds become occupied only through admission or transfer completion"
        )
    if new == BedStatus.BLOCKED:
        raise ConflictError("Use bed deactivation to block a bed")
    if current == BedStatus.BLOCKED:
        raise ConflictError("Bed is deactivated; reactivate it before changing its status")
    if current == BedStatus.OCCUPIED and has_active_assignment:
        raise ConflictError(
            f"Cannot move an occupied bed to '{new.value}' while its patient assignment is active. "
            "Discharge or transfer the patient first"
        )

    allowed = VALID_STATUS_TRANSITIONS.get(current, [])
    if new not in allowed:
        raise ConflictError(
            f"Invalid transition: bed cannot go from '{current.value}' to '{new.value}'. "
            f"Allowed: {[state.value for state in allowed]}"
        )
    return True


def validate_transfer_transition(current: TransferStatus, new: TransferStatus) -> bool:
    allowed = VALID_TRANSFER_TRANSITIONS.get(current, [])
    if new not in allowed:
        if not allowed:
            raise ConflictError(f"Transfer is already {current.value}")
        raise ConflictError(
            f"Invalid transition: transfer cannot go from '{current.value}' to '{new.value}'"
        )
    return True


def validate_assignment_termination(current: AssignmentStatus, final_status: AssignmentStatus) -> bool:
    if final_status not in TERMINAL_ASSIGNMENT_STATES:
        raise ValueError(f"'{final_status.value}' is not a terminal assignment status")
    if current != AssignmentStatus.ACTIVE:
        raise ConflictError(f"Assignment is already {current.value}")
    return True
