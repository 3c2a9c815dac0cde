"""
Delivery Assignment State Machine

This module is the SINGLE SOURCE OF TRUTH for assignment status transitions.
AssignmentService checks every claim and status update against it before
issuing the conditional UPDATE.

    unassigned -> assigned -> picked_up -> out_for_delivery -> delivered
                                 |               |
                                 v               +-> failed / returned
                              failed
    (assigned -> failed is also allowed)
"""

from typing import Dict, List, Optional, Union

from fleetledger.core.exceptions import InvalidTransitionError
from fleetledger.models.delivery import DeliveryStatus


StatusLike = Union[DeliveryStatus, str]


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> allowed next statuses
DELIVERY_TRANSITIONS: Dict[DeliveryStatus, List[DeliveryStatus]] = {
    DeliveryStatus.UNASSIGNED: [
        DeliveryStatus.ASSIGNED,          # Claim / admin dispatch
    ],
    DeliveryStatus.ASSIGNED: [
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.FAILED,            # Abort before pickup
    ],
    DeliveryStatus.PICKED_UP: [
        DeliveryStatus.OUT_FOR_DELIVERY,
        DeliveryStatus.FAILED,            # Abort after pickup
    ],
    DeliveryStatus.OUT_FOR_DELIVERY: [
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
        DeliveryStatus.RETURNED,
    ],
    DeliveryStatus.DELIVERED: [],         # Terminal
    DeliveryStatus.FAILED: [],            # Terminal
    DeliveryStatus.RETURNED: [],          # Terminal
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (DeliveryStatus.UNASSIGNED, DeliveryStatus.ASSIGNED): "Assign",
    (DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP): "Pick Up",
    (DeliveryStatus.ASSIGNED, DeliveryStatus.FAILED): "Abort",
    (DeliveryStatus.PICKED_UP, DeliveryStatus.OUT_FOR_DELIVERY): "Out for Delivery",
    (DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED): "Abort",
    (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED): "Deliver",
    (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.FAILED): "Delivery Failed",
    (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.RETURNED): "Return to Origin",
}

# Assignment column stamped when a status is entered
PHASE_TIMESTAMPS: Dict[DeliveryStatus, str] = {
    DeliveryStatus.ASSIGNED: "assigned_at",
    DeliveryStatus.PICKED_UP: "picked_up_at",
    DeliveryStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.FAILED: "failed_at",
    DeliveryStatus.RETURNED: "returned_at",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def parse_status(value: StatusLike) -> DeliveryStatus:
    """Coerce a stored or submitted value into the closed status enum."""
    if isinstance(value, DeliveryStatus):
        return value
    try:
        return DeliveryStatus(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown delivery status '{value}'", status=str(value))


def get_allowed_transitions(current_status: StatusLike) -> List[DeliveryStatus]:
    """Statuses reachable in one step from current_status."""
    return list(DELIVERY_TRANSITIONS.get(parse_status(current_status), []))


def get_transition_action(current_status: StatusLike, new_status: StatusLike) -> str:
    """Human label for an edge, written to the status log when no note is given."""
    current, new = parse_status(current_status), parse_status(new_status)
    return TRANSITION_ACTIONS.get((current, new), f"{current.value} -> {new.value}")


def is_terminal(status: StatusLike) -> bool:
    """Is this a terminal (final) state?"""
    return not DELIVERY_TRANSITIONS.get(parse_status(status))


def timestamp_field(status: StatusLike) -> Optional[str]:
    return PHASE_TIMESTAMPS.get(parse_status(status))


def validate_transition(current_status: StatusLike, new_status: StatusLike) -> DeliveryStatus:
    """
    Validate a status transition and return the target status.

    Unlike most workflows, a no-op transition is rejected as well: a
    repeated "delivered" must never reach the earnings step twice.

    Raises:
        InvalidTransitionError: Edge not in the table or source is terminal
    """
    current, new = parse_status(current_status), parse_status(new_status)

    allowed = DELIVERY_TRANSITIONS.get(current, [])
    if not allowed:
        raise InvalidTransitionError(
            f"Assignment in '{current.value}' status cannot be modified. This is a terminal state.",
            current=current.value,
            requested=new.value,
        )
    if new not in allowed:
        raise InvalidTransitionError(
            f"Cannot change assignment from '{current.value}' to '{new.value}'. "
            f"Allowed transitions: {', '.join(s.value for s in allowed)}",
            current=current.value,
            requested=new.value,
        )
    return new
