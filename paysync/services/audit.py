from typing import Any, Dict, List, Optional

from flask import current_app

from paysync.extensions import db
from paysync.models import AuditLogEntry
from paysync.services.persistence import insert_or_ignore
from paysync.utils.helpers import utcnow


def record(
    *,
    event_key: str,
    event_type: str,
    account_id: Optional[int] = None,
    provider_customer_id: Optional[str] = None,
    provider_subscription_id: Optional[str] = None,
    provider_invoice_id: Optional[str] = None,
    provider_payment_intent_id: Optional[str] = None,
    amount_cents: Optional[int] = None,
    currency: Optional[str] = None,
    description: Optional[str] = None,
    status: str = "pending",
    metadata: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Append one ledger row keyed by `event_key`; a no-op when the key exists.
    Returns True if a new row was written. Joins the caller's transaction
    (does not commit).
    """
    written = insert_or_ignore(
        AuditLogEntry,
        {
            "provider_event_id": event_key,
            "event_type": event_type,
            "account_id": account_id,
            "provider_customer_id": provider_customer_id,
            "provider_subscription_id": provider_subscription_id,
            "provider_invoice_id": provider_invoice_id,
            "provider_payment_intent_id": provider_payment_intent_id,
            "amount_cents": amount_cents,
            "currency": (currency or "usd").lower(),
            "description": (description or "")[:255] or None,
            "status": status,
            "metadata": metadata or {},
            "created_at": utcnow(),
        },
        conflict_on=["provider_event_id"],
    )
    if not written:
        current_app.logger.info(
            "billing.audit.duplicate_ignored",
            extra={"event_key": event_key, "event_type": event_type},
        )
    return written


def exists(event_key: str) -> bool:
    return db.session.query(
        AuditLogEntry.query.filter_by(provider_event_id=event_key).exists()
    ).scalar()


def entries_for_account(account_id: int, limit: Optional[int] = None) -> List[AuditLogEntry]:
    """Newest first, capped at AUDIT_LOG_PAGE_SIZE."""
    limit = limit or current_app.config.get("AUDIT_LOG_PAGE_SIZE", 100)
    return (
        AuditLogEntry.query
        .filter_by(account_id=account_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )
