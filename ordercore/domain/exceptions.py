"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by entities, state machines and
application services and are mapped to HTTP responses by the API layer.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when the current status forbids the requested operation.

    The message names the current status and the statuses the operation
    accepts, so operators racing on the same order can see what happened.
    """

    error_code = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
        operation: str | None = None,
        allowed_sources: list[str] | None = None,
        action: str | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Order").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: Allowed target states from current state.
            operation: Name of the attempted operation, if any.
            allowed_sources: States the operation may start from.
            action: Past participle describing the operation ("held").
        """
        allowed = allowed_transitions or []
        if action and allowed_sources is not None:
            sources = ", ".join(f"'{s}'" for s in allowed_sources)
            message = (
                f"{entity_type} {entity_id} has status '{current_state}'; "
                f"only {sources} orders can be {action}"
            )
        else:
            message = (
                f"Cannot transition {entity_type}({entity_id}) "
                f"from '{current_state}' to '{target_state}'. "
                f"Allowed transitions: {allowed}"
            )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
                "operation": operation,
                "allowed_sources": allowed_sources or [],
            },
        )


# ============================================================================
# Order Errors
# ============================================================================


class OrderError(DomainError):
    """Base class for order-related errors."""

    pass


class OrderNotFoundError(OrderError):
    """Raised when an order does not exist."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        """Initialize order not found error.

        Args:
            order_id: ID of the missing order.
        """
        super().__init__(
            f"Order not found: {order_id}",
            details={"order_id": order_id},
        )


class AlreadyCancelledError(OrderError):
    """Raised when cancelling an order that is already cancelled."""

    error_code = "ALREADY_CANCELLED"

    def __init__(self, order_id: str) -> None:
        """Initialize already cancelled error.

        Args:
            order_id: ID of the order.
        """
        super().__init__(
            f"Order {order_id} is already cancelled",
            details={"order_id": order_id},
        )


class OfferExpiredError(OrderError):
    """Raised when a post-purchase offer is accepted after its window closed."""

    error_code = "OFFER_EXPIRED"

    def __init__(self, order_id: str, expired_at: str | None = None) -> None:
        """Initialize offer expired error.

        Args:
            order_id: ID of the queued order.
            expired_at: ISO timestamp at which the offer window closed.
        """
        super().__init__(
            f"The post-purchase offer for order {order_id} has expired",
            details={"order_id": order_id, "expired_at": expired_at},
        )


class InvalidOrderNoteError(OrderError):
    """Raised when an order note exceeds the two line / twenty char limit."""

    error_code = "VALIDATION_FAILED"

    def __init__(self, reason: str) -> None:
        """Initialize invalid order note error.

        Args:
            reason: Why the note was rejected.
        """
        super().__init__(f"Invalid order note: {reason}", details={"reason": reason})


class ValidationFailedError(DomainError):
    """Raised when an input is malformed or a precondition on data fails."""

    error_code = "VALIDATION_FAILED"


class ForbiddenError(DomainError):
    """Raised when the caller's organization does not own the resource."""

    error_code = "FORBIDDEN"

    def __init__(self, resource: str, resource_id: str) -> None:
        """Initialize forbidden error.

        Args:
            resource: Resource type (e.g., "Order").
            resource_id: ID of the resource.
        """
        super().__init__(
            f"{resource} {resource_id} does not belong to your organization",
            details={"resource": resource, "resource_id": resource_id},
        )


# ============================================================================
# Catalog Errors
# ============================================================================


class UpsellNotFoundError(DomainError):
    """Raised when an upsell does not exist."""

    error_code = "UPSELL_NOT_FOUND"

    def __init__(self, upsell_id: str) -> None:
        """Initialize upsell not found error.

        Args:
            upsell_id: ID of the missing upsell.
        """
        super().__init__(
            f"Upsell not found: {upsell_id}",
            details={"upsell_id": upsell_id},
        )


# ============================================================================
# External Sync Errors
# ============================================================================


class SyncUnconfirmedError(DomainError):
    """Raised when the fulfillment system did not confirm a hold."""

    error_code = "SYNC_UNCONFIRMED"

    def __init__(
        self,
        order_id: str,
        remote_status: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize sync unconfirmed error.

        Args:
            order_id: ID of the local order.
            remote_status: Status reported by the fulfillment system, if read.
            reason: Underlying failure, if the verification could not be read.
        """
        if remote_status is not None:
            message = (
                f"Fulfillment system did not confirm hold for order {order_id} "
                f"(remote status '{remote_status}')"
            )
        else:
            message = f"Could not verify hold for order {order_id} in fulfillment system"
        super().__init__(
            message,
            details={"order_id": order_id, "remote_status": remote_status, "reason": reason},
        )


class ExternalUnavailableError(DomainError):
    """Raised when an external system call fails or times out."""

    error_code = "EXTERNAL_UNAVAILABLE"

    def __init__(self, system: str, reason: str, order_id: str | None = None) -> None:
        """Initialize external unavailable error.

        Args:
            system: External system name (e.g., "helpship").
            reason: Failure description.
            order_id: Related order, if any.
        """
        super().__init__(
            f"{system} request failed: {reason}",
            details={"system": system, "reason": reason, "order_id": order_id},
        )


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    pass


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    def __init__(self, currency1: str, currency2: str) -> None:
        """Initialize currency mismatch error.

        Args:
            currency1: First currency code.
            currency2: Second currency code.
        """
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    def __init__(self, amount: int) -> None:
        """Initialize negative money error.

        Args:
            amount: The negative amount in bani.
        """
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )
