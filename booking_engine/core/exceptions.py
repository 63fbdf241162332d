"""
Custom Exception Hierarchy

Every error the engine surfaces carries a stable error code and an HTTP
status, so the API layer renders them uniformly and the UI can branch on the
code (notably the "request access" prompt for authorization failures).
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    INVALID_REQUEST = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"

    # Authorization gate (2xxx)
    UNAUTHORIZED_RECIPIENT = "ERR_2001"
    UNAPPROVED_PART = "ERR_2002"

    # Pricing (3xxx)
    PRICING_UNAVAILABLE = "ERR_3001"

    # Wallet / ledger (4xxx)
    WALLET_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_FUNDS = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    WALLET_INACTIVE = "ERR_4004"
    LEDGER_INVARIANT_VIOLATION = "ERR_4005"

    # Carrier integration (5xxx)
    CARRIER_FAILURE = "ERR_5001"
    CARRIER_TIMEOUT = "ERR_5002"

    # Shipment / approval state machines (6xxx)
    SHIPMENT_NOT_FOUND = "ERR_6001"
    INVALID_STATE_TRANSITION = "ERR_6002"
    PART_APPROVAL_NOT_FOUND = "ERR_6003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class InvalidRequestError(AppException):
    """Malformed input. Caller error, never retried, nothing persisted."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_REQUEST,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


# ---------------------------------------------------------------------------
# Authorization gate
# ---------------------------------------------------------------------------

class AuthorizationException(AppException):
    """Base for authorization gate failures.

    Terminal for the shipment, no financial effect. The UI renders these as a
    "request access" prompt, so details always carry ``action``.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        brand_id: int,
        shipment_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=403,
            details=details
        )
        self.details["brand_id"] = brand_id
        self.details["action"] = "request_access"
        if shipment_id:
            self.details["shipment_id"] = shipment_id


class UnauthorizedRecipientError(AuthorizationException):
    """Recipient is not in the brand's authorized network"""

    def __init__(self, brand_id: int, recipient_id: int, shipment_id: int | None = None):
        super().__init__(
            message=f"Recipient {recipient_id} is not authorized for brand {brand_id}",
            error_code=ErrorCode.UNAUTHORIZED_RECIPIENT,
            brand_id=brand_id,
            shipment_id=shipment_id,
            details={"recipient_id": recipient_id}
        )
        self.recipient_id = recipient_id


class UnapprovedPartError(AuthorizationException):
    """A declared part has no APPROVED catalog approval for the brand"""

    def __init__(self, brand_id: int, part_id: str, shipment_id: int | None = None):
        super().__init__(
            message=f"Part '{part_id}' is not approved for brand {brand_id}",
            error_code=ErrorCode.UNAPPROVED_PART,
            brand_id=brand_id,
            shipment_id=shipment_id,
            details={"part_id": part_id}
        )
        self.part_id = part_id


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

class PricingUnavailableError(AppException):
    """Neither brand pricing nor a default rate could be resolved.

    Configuration fault: fatal for the request, not retried.
    """

    def __init__(self, brand_id: int, shipment_id: int | None = None):
        super().__init__(
            message=f"No courier rate configured for brand {brand_id} and no default rate set",
            error_code=ErrorCode.PRICING_UNAVAILABLE,
            status_code=503,
            details={"brand_id": brand_id}
        )
        if shipment_id:
            self.details["shipment_id"] = shipment_id


# ---------------------------------------------------------------------------
# Wallet ledger
# ---------------------------------------------------------------------------

class WalletException(AppException):
    """Base exception for wallet-related errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        wallet_id: int | None = None,
        status_code: int = 400,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        if wallet_id:
            self.details["wallet_id"] = wallet_id


class InsufficientFundsError(WalletException):
    """Balance does not cover the amount. Recoverable by recharging, never auto-retried."""

    def __init__(
        self,
        wallet_id: int,
        current_balance: int,
        required_amount: int,
        shipment_id: int | None = None
    ):
        super().__init__(
            message=f"Insufficient funds in wallet {wallet_id}",
            error_code=ErrorCode.INSUFFICIENT_FUNDS,
            wallet_id=wallet_id,
            status_code=402,
            details={
                "current_balance": current_balance,
                "required_amount": required_amount,
                "shortfall": required_amount - current_balance,
            }
        )
        if shipment_id:
            self.details["shipment_id"] = shipment_id
        self.current_balance = current_balance
        self.required_amount = required_amount


class InvalidAmountError(WalletException):
    """Amount is zero or negative (caller bug)"""

    def __init__(self, amount: Any, wallet_id: int | None = None):
        super().__init__(
            message=f"Amount must be a positive integer number of minor units, got {amount!r}",
            error_code=ErrorCode.INVALID_AMOUNT,
            wallet_id=wallet_id,
            details={"amount": str(amount)}
        )


class WalletNotFoundError(WalletException):
    """Raised when wallet is not found"""

    def __init__(self, wallet_id: int | None = None, brand_id: int | None = None):
        identifier = f"brand {brand_id}" if brand_id is not None else f"id {wallet_id}"
        super().__init__(
            message=f"Wallet not found for {identifier}",
            error_code=ErrorCode.WALLET_NOT_FOUND,
            wallet_id=wallet_id,
            status_code=404,
        )
        if brand_id is not None:
            self.details["brand_id"] = brand_id


class WalletInactiveError(WalletException):
    """Wallet was deactivated and accepts no new transactions"""

    def __init__(self, wallet_id: int):
        super().__init__(
            message=f"Wallet {wallet_id} is deactivated",
            error_code=ErrorCode.WALLET_INACTIVE,
            wallet_id=wallet_id,
            status_code=409,
        )


class LedgerInvariantViolationError(WalletException):
    """Replaying the ledger does not reproduce the balance.

    The wallet is frozen for writes pending a manual audit.
    """

    def __init__(self, wallet_id: int, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Ledger invariant violated for wallet {wallet_id}: {reason}",
            error_code=ErrorCode.LEDGER_INVARIANT_VIOLATION,
            wallet_id=wallet_id,
            status_code=409,
            details=details
        )
        self.details["reason"] = reason


# ---------------------------------------------------------------------------
# Carrier
# ---------------------------------------------------------------------------

class CarrierError(AppException):
    """AWB request failed. Transient, owned by the reconciliation sweep."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Carrier error: {message}",
            error_code=ErrorCode.CARRIER_FAILURE,
            status_code=502,
            details=details
        )
        self.details["service"] = "carrier"

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "CarrierError":
        """
        Build a CarrierError from an HTTP response.

        Args:
            operation: carrier operation name (e.g. "awb")
            response: response object (e.g. httpx.Response)
            message: custom message, built from the status code if omitted
            max_response_chars: cap on the stored response body
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class CarrierTimeoutError(CarrierError):
    """Carrier did not answer within the configured timeout"""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message=f"request timed out after {timeout_seconds}s",
            details={"timeout_seconds": timeout_seconds}
        )
        self.error_code = ErrorCode.CARRIER_TIMEOUT


# ---------------------------------------------------------------------------
# State machines
# ---------------------------------------------------------------------------

class ShipmentNotFoundError(NotFoundException):
    """Raised when shipment is not found"""

    def __init__(self, shipment_id: int):
        super().__init__("Shipment", shipment_id, ErrorCode.SHIPMENT_NOT_FOUND)


class PartApprovalNotFoundError(NotFoundException):
    """Raised when a part approval record is not found"""

    def __init__(self, approval_id: int):
        super().__init__("PartApproval", approval_id, ErrorCode.PART_APPROVAL_NOT_FOUND)


class InvalidStateTransitionError(AppException):
    """Raised when state transition is not allowed"""

    def __init__(
        self,
        current_state: str,
        target_state: str,
        entity: str = "shipment",
        entity_id: int | None = None
    ):
        super().__init__(
            message=f"Invalid {entity} transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={
                "entity": entity,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
            }
        )
