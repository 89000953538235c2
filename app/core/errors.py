"""Error taxonomy shared by the tenant, order and payment layers.

Every error is an ``HTTPException`` so routers and dependencies can raise it
directly; ``app.core.error_handlers`` renders the common body shape.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            status_code=self.http_status,
            detail=message or self.default_message,
            headers=headers,
        )
        self.details = details

    @property
    def code(self) -> str:
        return type(self).__name__

    @property
    def message(self) -> str:
        return str(self.detail)


# Tenant context


class TenantIdRequired(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Tenant id required"


class TenantNotFound(ServiceError):
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Tenant not found"


class TenantNotFoundForOwner(ServiceError):
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "No tenant is owned by this account"


class TenantAccessDenied(ServiceError):
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "Access to this tenant is not allowed"


class TenantInactive(ServiceError):
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "Tenant is inactive"


class SubscriptionInvalid(ServiceError):
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "Subscription expired or invalid"


class TenantUnavailable(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "No valid tenant context for this request"


# Authentication / authorization


class NotAuthenticated(ServiceError):
    http_status = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        super().__init__(message, details=details, headers={"WWW-Authenticate": "Bearer"})


class PermissionDenied(ServiceError):
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class CrossTenantLoginDenied(ServiceError):
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "This account cannot sign in to this restaurant"


class AccountLocked(ServiceError):
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many failed login attempts, try again later"


class RateLimited(ServiceError):
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests, try again later"
    retryable = True

    def __init__(self, message: str | None = None, *, retry_after_seconds: int = 1, details: Any = None) -> None:
        super().__init__(message, details=details, headers={"Retry-After": str(retry_after_seconds)})
        self.retry_after_seconds = retry_after_seconds


class Conflict(ServiceError):
    http_status = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class UserNotFound(ServiceError):
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "User not found"


# Orders


class EmptyOrder(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "An order needs at least one item"


class InvalidStatus(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid order status"


class InvalidStatusTransition(ServiceError):
    http_status = status.HTTP_409_CONFLICT
    default_message = "Order status cannot change from its current state"


class OrderNotFound(ServiceError):
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Order not found"


# Payments


class InvalidAmount(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Amount must be greater than zero"


class PaymentProviderUnavailable(ServiceError):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Payment provider is not configured"


class PaymentNotAuthorized(ServiceError):
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "This payment does not belong to the current user"


class PaymentFailed(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Payment failed"


class PaymentProviderError(ServiceError):
    http_status = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment provider error"


class PaymentProviderTimeout(PaymentProviderError):
    http_status = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = "Payment provider did not answer in time, retry the request"
    retryable = True

    def __init__(self, message: str | None = None, *, details: Any = None, retry_after_seconds: int = 2) -> None:
        super().__init__(message, details=details, headers={"Retry-After": str(retry_after_seconds)})
