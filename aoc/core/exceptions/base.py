from typing import Any, Dict, Optional

from fastapi import status

from aoc.core.exceptions.handler import ServiceError, ServiceErrorCode


class InvalidInputError(ServiceError):
    expected = True

    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None,
                 code: str = ServiceErrorCode.INVALID_INPUT):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(ServiceError):
    expected = True

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None,
                 code: str = ServiceErrorCode.NOT_FOUND):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
        )


class ForbiddenError(ServiceError):
    expected = True

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            code=ServiceErrorCode.FORBIDDEN,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class ConflictError(ServiceError):
    expected = True

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class UserAlreadyExistsError(ConflictError):
    def __init__(self, uid: str):
        super().__init__(
            ServiceErrorCode.USER_ALREADY_EXISTS,
            "User already exists",
            details={"uid": uid},
        )


class TaskAlreadyCompletedError(ConflictError):
    def __init__(self, uid: str, task_id: str):
        super().__init__(
            ServiceErrorCode.TASK_ALREADY_COMPLETED,
            "Task already completed",
            details={"uid": uid, "task_id": task_id},
        )


class DuplicateSignatureError(ConflictError):
    """The transaction signature already backs a reservation."""

    def __init__(self, signature: str, existing: Optional[Any] = None):
        details: Dict[str, Any] = {"signature": signature}
        if existing is not None:
            details["reservation"] = existing
        super().__init__(
            ServiceErrorCode.DUPLICATE_SIGNATURE,
            "You already used this transaction. Each payment can back only one reservation.",
            details=details,
        )
        self.signature = signature
        self.existing = existing


class TierSoldOutError(ConflictError):
    def __init__(self, tier: str, supply_cap: int):
        super().__init__(
            ServiceErrorCode.TIER_SOLD_OUT,
            f"The {tier} tier is sold out.",
            details={"tier": tier, "supply": supply_cap},
        )
        self.tier = tier


class UserTierLimitError(ConflictError):
    def __init__(self, tier: str, user_cap: int):
        super().__init__(
            ServiceErrorCode.USER_TIER_LIMIT_REACHED,
            f"You've reached your limit of {user_cap} for the {tier} tier.",
            details={"tier": tier, "limit": user_cap},
        )
        self.tier = tier


class VerificationFailedError(ServiceError):
    """On-chain verification rejected the payment, or could not be completed."""

    expected = True

    def __init__(self, reason: str, message: str, retryable: bool = False,
                 details: Optional[Dict[str, Any]] = None):
        payload = {"reason": reason, "retryable": retryable}
        payload.update(details or {})
        super().__init__(
            code=ServiceErrorCode.VERIFICATION_FAILED,
            message=f"We couldn't verify your payment: {message}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=payload,
        )
        self.reason = reason
        self.retryable = retryable


class PriceUnavailableError(ServiceError):
    def __init__(self, message: str = "SOL price is currently unavailable. Please try again shortly."):
        super().__init__(
            code=ServiceErrorCode.PRICE_UNAVAILABLE,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
        )


class ChainRPCError(ServiceError):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ServiceErrorCode.RPC_ERROR,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"retryable": True},
            context=context,
        )


class InfrastructureError(ServiceError):
    def __init__(self, message: str = "Storage is temporarily unavailable. Please try again.",
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ServiceErrorCode.STORE_UNAVAILABLE,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
            context=context,
        )
