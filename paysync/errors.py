"""
Failure taxonomy for the billing engine.

Every error carries a machine-readable ``code`` so callers can branch
(e.g. redirect to the add-card flow on ``payment_method_required``) without
matching on prose. ``status`` is the HTTP status the app-level error handler
renders it with.
"""
from typing import Any, Dict, Optional


class BillingError(Exception):
    code = "billing_error"
    status = 400
    retryable = False

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        payload.update(self.details)
        if self.retryable:
            payload["retryable"] = True
        return payload


class ConfigurationError(BillingError):
    """Unknown/unpriced plan, missing secrets. Fatal; details stay in the logs."""
    code = "configuration_error"
    status = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": "Billing is not configured correctly"}


class PaymentMethodRequired(BillingError):
    code = "payment_method_required"
    status = 402


class AlreadySubscribed(BillingError):
    code = "already_subscribed"
    status = 409


class NotFound(BillingError):
    code = "not_found"
    status = 404


class Forbidden(BillingError):
    code = "forbidden"
    status = 403


class InvalidRequest(BillingError):
    code = "invalid_request"
    status = 400


class ProviderError(BillingError):
    """The provider answered and refused the request."""
    code = "provider_error"
    status = 502


class ProviderUnavailable(ProviderError):
    """
    Transport failure, timeout, rate limit or provider 5xx. When raised from
    a mutating call the outcome is ambiguous: the provider may have applied
    it, so check current state before retrying.
    """
    code = "provider_unavailable"
    status = 503
    retryable = True


class SignatureInvalid(BillingError):
    code = "signature_invalid"
    status = 400
