"""Transactional email: SMTP transport and payment email templates."""
from .mailer import SMTPMailer
from .templates import render_success, render_failure, format_amount

__all__ = ["SMTPMailer", "render_success", "render_failure", "format_amount"]
