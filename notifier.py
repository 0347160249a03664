"""
Outgoing email.

Delivery is best-effort: a failed render or send is logged and never reaches the
caller. When a scheduler is given (FastAPI's ``BackgroundTasks.add_task``)
the send runs after the response has been returned.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import Callable, Iterable, Optional

import settings

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "pending": "Your order is being processed",
    "confirmed": "Your order has been confirmed",
    "shipped": "Your order has been shipped",
    "out_for_delivery": "Your order is out for delivery",
    "delivered": "Your order has been delivered",
    "cancelled": "Your order has been cancelled",
}


class LogMailer:
    """Console mode, used when no SMTP credentials are configured."""

    def send(self, message: EmailMessage):
        logger.info("Email (console mode) to=%s subject=%r", message["To"], message["Subject"])


class SMTPMailer:
    def __init__(self, host: str, port: int, user: str, password: str, timeout: int = 10):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def send(self, message: EmailMessage):
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(message)
        logger.info("Email sent to %s", message["To"])


def default_mailer():
    if not settings.EMAIL_USER or not settings.EMAIL_PASS:
        logger.warning("No email credentials provided. Emails will be logged to console.")
        return LogMailer()
    return SMTPMailer(settings.SMTP_HOST, settings.SMTP_PORT, settings.EMAIL_USER, settings.EMAIL_PASS)


def render_verification(name: str, token: str) -> str:
    url = f"{settings.FRONTEND_URL}/verify-email/{token}"
    return (
        f"<h2>Welcome to Our E-Commerce Store!</h2><p>Hi {name},</p>"
        f"<p>Please verify your email address: <a href=\"{url}\">{url}</a></p>"
        "<p>If you didn't create an account with us, you can safely ignore this email.</p>"
    )


def render_password_reset(name: str, token: str) -> str:
    url = f"{settings.FRONTEND_URL}/reset-password/{token}"
    return (
        f"<h2>Password Reset Request</h2><p>Hi {name},</p>"
        f"<p>Set a new password here: <a href=\"{url}\">{url}</a></p>"
        "<p>This reset link will expire in 1 hour.</p>"
    )


def render_order_confirmation(name: str, order_number: str, items: Iterable[dict], total: float) -> str:
    rows = "".join(
        f"<tr><td>{item.get('title') or item.get('product_id', '')}</td><td>{item['quantity']}</td>"
        f"<td>${item['price']:.2f}</td></tr>"
        for item in items
    )
    return (
        f"<h2>Order Confirmation</h2><p>Hi {name},</p>"
        f"<p>Thank you for your order! Your order <strong>{order_number}</strong> has been confirmed.</p>"
        f"<table><tr><th>Item</th><th>Qty</th><th>Price</th></tr>{rows}"
        f"<tr><td colspan=\"2\">Total:</td><td>${total:.2f}</td></tr></table>"
    )


def render_status_update(name: str, order_number: str, status: str, tracking_number: Optional[str] = None) -> str:
    html = (
        f"<h2>Order Status Update</h2><p>Hi {name},</p>"
        f"<p>Your order <strong>{order_number}</strong> status has been updated:</p>"
        f"<h3>Status: {status.replace('_', ' ').upper()}</h3><p>{STATUS_MESSAGES.get(status, '')}</p>"
    )
    if tracking_number:
        html += f"<p><strong>Tracking Number:</strong> {tracking_number}</p>"
    return html


class Notifier:
    def __init__(self, mailer, schedule: Optional[Callable] = None):
        self.mailer = mailer
        self.schedule = schedule

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = settings.FROM_EMAIL
        message["To"] = to
        message["Subject"] = subject
        message.set_content(html, subtype="html")
        return message

    def _deliver(self, to: str, subject: str, render: Callable[..., str], *args):
        try:
            self.mailer.send(self._build(to, subject, render(*args)))
        except Exception:
            logger.exception("Email sending failed: to=%s subject=%r", to, subject)

    def _dispatch(self, to: str, subject: str, render: Callable[..., str], *args):
        if self.schedule is not None:
            self.schedule(self._deliver, to, subject, render, *args)
        else:
            self._deliver(to, subject, render, *args)

    def send_verification(self, email: str, name: str, token: str):
        self._dispatch(email, "Verify Your Email Address", render_verification, name, token)

    def send_password_reset(self, email: str, name: str, token: str):
        self._dispatch(email, "Password Reset Request", render_password_reset, name, token)

    def send_order_confirmation(self, email: str, name: str, order_number: str, items: Iterable[dict], total: float):
        self._dispatch(email, f"Order Confirmation - {order_number}", render_order_confirmation,
                       name, order_number, items, total)

    def send_order_status_update(self, email: str, name: str, order_number: str, status: str, tracking_number: Optional[str] = None):
        self._dispatch(email, f"Order Update - {order_number}", render_status_update,
                       name, order_number, status, tracking_number)
