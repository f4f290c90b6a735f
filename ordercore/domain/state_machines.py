"""State machine for purchase orders.

Deterministic state machine that defines valid order status
transitions and which status each engine operation may start from.
Every mutation goes through ``require_operation`` or
``validate_order_transition`` before touching the repository.
"""

from enum import Enum

from ordercore.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        TESTING ─── promote ─────────────┐
          │                              ▼
          │           QUEUE ── finalize ─► PENDING ◄─── resync ─── SYNC_ERROR
          │                              │  │  │  ▲
          │                     schedule │  │  │  │ unhold
          │                              ▼  │  ▼  │
          │                      SCHEDULED  │  HOLD
          │                              │  │
          │                      confirm ▼  ▼ confirm
          │                          CONFIRMED
          │
          └─ bulk cancel ─► CANCELLED ◄── cancel (from any status)
                               │
                               └── uncancel restores the recorded prior status

        A failed Helpship create moves PENDING to SYNC_ERROR.
    """

    TESTING = "testing"
    QUEUE = "queue"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    HOLD = "hold"
    CANCELLED = "cancelled"
    SYNC_ERROR = "sync_error"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_ORDER_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_cancellable(self) -> bool:
        """Check if order can be cancelled.

        Returns:
            True if order can be cancelled.
        """
        return self != OrderStatus.CANCELLED

    def is_externally_tracked(self) -> bool:
        """Check if orders in this state are expected to exist in Helpship.

        Returns:
            True for states reached after a successful finalization.
        """
        return self in {
            OrderStatus.PENDING,
            OrderStatus.SCHEDULED,
            OrderStatus.CONFIRMED,
            OrderStatus.HOLD,
        }


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.TESTING: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.QUEUE: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.SCHEDULED,
        OrderStatus.HOLD,
        OrderStatus.CANCELLED,
        OrderStatus.SYNC_ERROR,
        OrderStatus.PENDING,  # resync links an unlinked pending order
    },
    OrderStatus.SCHEDULED: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.CANCELLED},
    OrderStatus.HOLD: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.SYNC_ERROR: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    # Uncancel restores whatever status was recorded at cancel time.
    OrderStatus.CANCELLED: {
        OrderStatus.TESTING,
        OrderStatus.QUEUE,
        OrderStatus.PENDING,
        OrderStatus.SCHEDULED,
        OrderStatus.CONFIRMED,
        OrderStatus.HOLD,
        OrderStatus.SYNC_ERROR,
    },
}


# ============================================================================
# Engine Operations
# ============================================================================


class OrderOperation(str, Enum):
    """Operations of the transition engine."""

    PROMOTE = "promote"
    FINALIZE = "finalize"
    ATTACH_UPSELL = "attach_upsell"
    CONFIRM = "confirm"
    SCHEDULED_CONFIRM = "scheduled_confirm"
    SCHEDULE = "schedule"
    HOLD = "hold"
    UNHOLD = "unhold"
    CANCEL = "cancel"
    UNCANCEL = "uncancel"
    RESYNC = "resync"
    BULK_CANCEL_TESTING = "bulk_cancel_testing"

    def allowed_sources(self) -> list[OrderStatus]:
        """Get the statuses this operation may start from.

        Returns:
            Sorted list of source statuses.
        """
        return sorted(_OPERATION_SOURCES[self], key=lambda s: s.value)

    def accepts(self, status: OrderStatus) -> bool:
        """Check if the operation may start from the given status.

        Args:
            status: Current persisted status.

        Returns:
            True if the operation is legal from this status.
        """
        return status in _OPERATION_SOURCES[self]

    @property
    def action(self) -> str:
        """Past participle used in error messages."""
        return _OPERATION_ACTIONS[self]


_OPERATION_SOURCES: dict[OrderOperation, set[OrderStatus]] = {
    OrderOperation.PROMOTE: {OrderStatus.TESTING},
    OrderOperation.FINALIZE: {OrderStatus.QUEUE},
    OrderOperation.ATTACH_UPSELL: {OrderStatus.QUEUE},
    OrderOperation.CONFIRM: {OrderStatus.PENDING, OrderStatus.SCHEDULED},
    OrderOperation.SCHEDULED_CONFIRM: {OrderStatus.SCHEDULED},
    OrderOperation.SCHEDULE: {OrderStatus.PENDING},
    OrderOperation.HOLD: {OrderStatus.PENDING},
    OrderOperation.UNHOLD: {OrderStatus.HOLD},
    OrderOperation.CANCEL: {s for s in OrderStatus if s != OrderStatus.CANCELLED},
    OrderOperation.UNCANCEL: {OrderStatus.CANCELLED},
    OrderOperation.RESYNC: {OrderStatus.PENDING, OrderStatus.SYNC_ERROR},
    OrderOperation.BULK_CANCEL_TESTING: {OrderStatus.TESTING},
}

_OPERATION_ACTIONS: dict[OrderOperation, str] = {
    OrderOperation.PROMOTE: "promoted",
    OrderOperation.FINALIZE: "finalized",
    OrderOperation.ATTACH_UPSELL: "given a postsale upsell",
    OrderOperation.CONFIRM: "confirmed",
    OrderOperation.SCHEDULED_CONFIRM: "confirmed by the scheduler",
    OrderOperation.SCHEDULE: "scheduled",
    OrderOperation.HOLD: "held",
    OrderOperation.UNHOLD: "released from hold",
    OrderOperation.CANCEL: "cancelled",
    OrderOperation.UNCANCEL: "uncancelled",
    OrderOperation.RESYNC: "resynced",
    OrderOperation.BULK_CANCEL_TESTING: "bulk cancelled",
}


# ============================================================================
# Validation Helpers
# ============================================================================


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def require_operation(
    order_id: str,
    operation: OrderOperation,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate that an operation may run from the current status.

    Checks both the operation's source statuses and the transition map.

    Args:
        order_id: Order identifier for error message.
        operation: Engine operation being attempted.
        current_status: Current persisted order status.
        target_status: Status the operation would write.

    Raises:
        InvalidStateTransitionError: If the operation is not legal now.
    """
    if not operation.accepts(current_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
            operation=operation.value,
            allowed_sources=[s.value for s in operation.allowed_sources()],
            action=operation.action,
        )
    validate_order_transition(order_id, current_status, target_status)
