from flask import jsonify, request
from . import bp
from paysync.extensions import csrf, limiter
from paysync.services import webhooks

# ----- Stripe Webhook (subscriptions, invoices, payment methods, refunds) -----
@csrf.exempt
@limiter.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Signature is checked against the raw bytes before anything else; a bad
    signature is the only non-2xx answer (rendered by the BillingError handler).
    """
    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature", "")
    result = webhooks.handle(raw_bytes, sig_header)
    return jsonify(result.to_dict()), 200
