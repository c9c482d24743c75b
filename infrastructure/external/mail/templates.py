"""
HTML/text bodies for payment outcome emails.
"""
from __future__ import annotations

from datetime import datetime
from html import escape
from string import Template
from typing import Optional

from domain.payment.entity import Payment

DEFAULT_DECLINE_REASON = "Payment declined by bank"

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; }
    .header { background: $header_color; color: white; padding: 20px; text-align: center; }
    .content { padding: 20px; }
    .payment-details { background: #f8f9fa; padding: 15px; border-radius: 5px; margin: 20px 0; }
    .footer { background: #f8f9fa; padding: 15px; text-align: center; font-size: 12px; color: #666; }
    .retry-button { background: #007bff; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px; display: inline-block; margin: 10px 0; }
"""

_SUCCESS_HTML = Template("""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><style>$style</style></head>
<body>
  <div class="header"><h1>Payment Successful!</h1></div>
  <div class="content">
    <p>Dear Customer,</p>
    <p>Thank you for your payment! Your transaction has been completed successfully.</p>
    <div class="payment-details">
      <h3>Payment Details:</h3>
      <p><strong>Amount:</strong> $amount</p>
      <p><strong>Description:</strong> $description</p>
      <p><strong>Payment ID:</strong> $payment_id</p>
      <p><strong>Date:</strong> $date</p>
      <p><strong>Payment Method:</strong> $card_brand ending in $card_last4</p>
    </div>
    <p>Please keep this email for your records.</p>
    <p>If you have any questions about this payment, please contact us at <a href="mailto:$support_email">$support_email</a>.</p>
    <p>Best regards,<br>The $app_name Team</p>
  </div>
  <div class="footer"><p>This is an automated message. Please do not reply to this email.</p></div>
</body>
</html>
""")

_FAILURE_HTML = Template("""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><style>$style</style></head>
<body>
  <div class="header"><h1>Payment Failed</h1></div>
  <div class="content">
    <p>Dear Customer,</p>
    <p>We were unable to process your payment. No charges have been made to your account.</p>
    <div class="payment-details">
      <h3>Payment Details:</h3>
      <p><strong>Amount:</strong> $amount</p>
      <p><strong>Description:</strong> $description</p>
      <p><strong>Date:</strong> $date</p>
      <p><strong>Reason:</strong> $reason</p>
    </div>
    <p>You can try your payment again:</p>
    <a href="$retry_url" class="retry-button">Try Payment Again</a>
    <p>If you continue to have issues, please try a different payment method or contact your bank.</p>
    <p>If you need assistance, please contact us at <a href="mailto:$support_email">$support_email</a>.</p>
    <p>Best regards,<br>The $app_name Team</p>
  </div>
  <div class="footer"><p>This is an automated message. Please do not reply to this email.</p></div>
</body>
</html>
""")

_SUCCESS_TEXT = Template(
    "Payment successful\n\n"
    "Amount: $amount\nDescription: $description\nPayment ID: $payment_id\nDate: $date\n"
    "Payment Method: $card_brand ending in $card_last4\n\n"
    "Questions? Contact $support_email\n\nThe $app_name Team\n"
)

_FAILURE_TEXT = Template(
    "Payment failed\n\n"
    "Amount: $amount\nDescription: $description\nDate: $date\nReason: $reason\n\n"
    "Try again: $retry_url\nQuestions? Contact $support_email\n\nThe $app_name Team\n"
)


def format_amount(amount: int, currency: str) -> str:
    """Minor units to a display string, e.g. 50000 INR -> 'INR 500.00'."""
    return f"{currency} {amount / 100:,.2f}"


def _format_date(dt: Optional[datetime]) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%b %d, %Y at %I:%M %p UTC")


def _context(payment: Payment, *, app_name: str, support_email: str, retry_url: str) -> dict[str, str]:
    return {
        "amount": format_amount(payment.amount, payment.currency),
        "description": payment.description or "-",
        "payment_id": payment.gateway_payment_id or "-",
        "date": _format_date(payment.created_at),
        "card_brand": (payment.card_brand or "").upper() or "Card",
        "card_last4": payment.card_last4 or "****",
        "reason": payment.failure_reason or DEFAULT_DECLINE_REASON,
        "support_email": support_email,
        "app_name": app_name,
        "retry_url": retry_url,
    }


def render_success(payment: Payment, *, app_name: str, support_email: str, retry_url: str) -> tuple[str, str, str]:
    """Returns (subject, text, html)."""
    ctx = _context(payment, app_name=app_name, support_email=support_email, retry_url=retry_url)
    html_ctx = {k: escape(v) for k, v in ctx.items()}
    html_ctx["style"] = Template(_STYLE).substitute(header_color="#28a745")
    return (
        f"Payment Successful - {app_name}",
        _SUCCESS_TEXT.substitute(ctx),
        _SUCCESS_HTML.substitute(html_ctx),
    )


def render_failure(payment: Payment, *, app_name: str, support_email: str, retry_url: str) -> tuple[str, str, str]:
    """Returns (subject, text, html)."""
    ctx = _context(payment, app_name=app_name, support_email=support_email, retry_url=retry_url)
    html_ctx = {k: escape(v) for k, v in ctx.items()}
    html_ctx["style"] = Template(_STYLE).substitute(header_color="#dc3545")
    return (
        f"Payment Failed - {app_name}",
        _FAILURE_TEXT.substitute(ctx),
        _FAILURE_HTML.substitute(html_ctx),
    )
