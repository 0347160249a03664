import pytest
from unittest import mock

import settings
from notifier import LogMailer, Notifier, SMTPMailer, default_mailer
from seed import DEMO_PRODUCTS, seed_demo_data
from security import verify_password
from tests.helpers import BrokenMailer, Outbox


def test_default_mailer_without_credentials_logs(monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_USER", None)
    assert isinstance(default_mailer(), LogMailer)

    monkeypatch.setattr(settings, "EMAIL_USER", "shop@mail.com")
    monkeypatch.setattr(settings, "EMAIL_PASS", "app-password")
    assert isinstance(default_mailer(), SMTPMailer)


def test_smtp_mailer_sends(outbox):
    Notifier(outbox).send_verification("alice@mail.com", "Alice", "tok123")
    with mock.patch("smtplib.SMTP") as smtp:
        SMTPMailer("smtp.mail.com", 587, "shop@mail.com", "pw").send(outbox.messages[0])
    session = smtp.return_value.__enter__.return_value
    session.starttls.assert_called_once()
    session.login.assert_called_once_with("shop@mail.com", "pw")
    session.send_message.assert_called_once_with(outbox.messages[0])


def test_messages_carry_links_and_details(outbox):
    notifier = Notifier(outbox)
    notifier.send_verification("alice@mail.com", "Alice", "tok123")
    notifier.send_order_confirmation("alice@mail.com", "Alice", "ORD-1-abc", [{"title": "Lamp", "quantity": 2, "price": 15.0}], 39.39)
    notifier.send_order_status_update("alice@mail.com", "Alice", "ORD-1-abc", "out_for_delivery", "1Z999")

    verify, confirmation, update = [m.get_content() for m in outbox.messages]
    assert f"{settings.FRONTEND_URL}/verify-email/tok123" in verify
    assert "Lamp" in confirmation and "$39.39" in confirmation
    assert "OUT FOR DELIVERY" in update and "1Z999" in update


def test_scheduled_delivery_runs_later(outbox):
    scheduled = []
    notifier = Notifier(outbox, schedule=lambda fn, *args: scheduled.append((fn, args)))
    notifier.send_password_reset("alice@mail.com", "Alice", "tok")
    assert outbox.messages == []

    fn, args = scheduled[0]
    fn(*args)
    assert outbox.subjects == ["Password Reset Request"]


def test_delivery_failures_are_swallowed(caplog):
    Notifier(BrokenMailer()).send_order_status_update("alice@mail.com", "Alice", "ORD-1", "shipped")
    assert "Email sending failed" in caplog.text


def test_seed_is_idempotent(store):
    assert seed_demo_data(store)["seeded"] is True
    assert store["product"].count_documents({}) == len(DEMO_PRODUCTS)

    admin = store["user"].find_one({"role": "admin"})
    assert admin["email"] == settings.ADMIN_EMAIL
    assert admin["is_verified"] is True
    assert verify_password(settings.ADMIN_PASSWORD, admin["password_hash"])

    assert seed_demo_data(store) == {"seeded": False, "message": "Products already exist"}
    assert store["user"].count_documents({"role": "admin"}) == 1
    assert store["product"].count_documents({}) == len(DEMO_PRODUCTS)


@pytest.mark.parametrize("status", ["pending", "cancelled"])
def test_every_status_has_a_message(status):
    outbox = Outbox()
    Notifier(outbox).send_order_status_update("alice@mail.com", "Alice", "ORD-2", status)
    assert status.upper() in outbox.messages[0].get_content()


def test_confirmation_falls_back_to_product_id(outbox):
    Notifier(outbox).send_order_confirmation("alice@mail.com", "Alice", "ORD-3", [{"product_id": "abc123", "quantity": 1, "price": 5.0}], 5.0)
    assert "abc123" in outbox.messages[0].get_content()


def test_render_errors_are_swallowed(outbox, caplog):
    # line without a price cannot be rendered
    Notifier(outbox).send_order_confirmation("alice@mail.com", "Alice", "ORD-4", [{"title": "Lamp", "quantity": 1}], 5.0)
    assert outbox.messages == []
    assert "Email sending failed" in caplog.text
