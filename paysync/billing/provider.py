"""
Stripe access for the billing engine.

All provider calls go through ``client()`` and are wrapped in
``provider_call`` so SDK exceptions surface as the engine's own error
taxonomy. Timeouts and connection drops on mutating calls are *ambiguous*:
the request may have been applied on Stripe's side.
"""
from contextlib import contextmanager
from typing import Any
import hashlib

import stripe
from flask import current_app
from stripe import StripeClient

from paysync.errors import ConfigurationError, NotFound, ProviderError, ProviderUnavailable


def client() -> StripeClient:
    cfg = current_app.config
    key = cfg.get("STRIPE_SECRET_KEY")
    if not key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(
        key,
        stripe_version=cfg.get("STRIPE_API_VERSION"),
        max_network_retries=cfg.get("STRIPE_MAX_NETWORK_RETRIES", 2),
        http_client=stripe.RequestsClient(timeout=cfg.get("STRIPE_TIMEOUT_SECONDS", 10)),
    )


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "paysync:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


@contextmanager
def provider_call(operation: str, *, mutating: bool = False, **context: Any):
    """
    Translate Stripe SDK failures for one provider call.

        with provider_call("subscriptions.create", mutating=True, account_id=7):
            sub = client().subscriptions.create(params)
    """
    try:
        yield
    except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
        _log_failure(operation, exc, context)
        raise ProviderUnavailable(
            f"Payment provider unavailable during {operation}",
            operation=operation,
            ambiguous=mutating and isinstance(exc, stripe.APIConnectionError),
        ) from exc
    except stripe.InvalidRequestError as exc:
        _log_failure(operation, exc, context)
        if getattr(exc, "code", None) == "resource_missing":
            raise NotFound(f"Provider object not found during {operation}", operation=operation) from exc
        raise ProviderError(_user_message(exc), operation=operation) from exc
    except stripe.APIError as exc:
        # 5xx from Stripe: retryable, and for writes we can't know if it landed
        _log_failure(operation, exc, context)
        raise ProviderUnavailable(
            f"Payment provider error during {operation}",
            operation=operation,
            ambiguous=mutating,
        ) from exc
    except stripe.StripeError as exc:
        _log_failure(operation, exc, context)
        raise ProviderError(_user_message(exc), operation=operation) from exc


def _user_message(exc) -> str:
    return getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__


def _log_failure(operation: str, exc: Exception, context: dict) -> None:
    current_app.logger.warning(
        "billing.provider.call_failed",
        extra={"operation": operation, "error": type(exc).__name__, **context},
    )


def field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict (webhook payloads)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def ref(obj: Any) -> str | None:
    """Stripe fields may be an id string or an expanded object."""
    if obj is None or isinstance(obj, str):
        return obj
    return field(obj, "id")
