from flask import current_app
from flask_mail import Message, Mail
from threading import Thread

mail = Mail()


def send_async_email(app, msg):
    with app.app_context():
        try:
            mail.send(msg)
        except Exception as e:
            app.logger.error(f"Failed to send email: {e}")


def _format_amount(registration):
    if not registration.payment_amount:
        return "Free"
    return f"{registration.payment_amount / 100:.2f} {registration.currency}"


def send_registration_confirmation_email(registration, event):
    """Tell the attendee their spot is confirmed (free signup or captured payment)."""
    if not registration.attendee_email:
        current_app.logger.info(
            f"No email on registration {registration.id}; skipping confirmation"
        )
        return

    app = current_app._get_current_object()
    event_url = f"{app.config.get('CLIENT_URL')}/events/{event.id}"

    # If in testing mode, log the email instead of sending it
    if app.testing:
        app.logger.info("--- MOCK CONFIRMATION EMAIL ---")
        app.logger.info(f"To: {registration.attendee_email}")
        app.logger.info(f"Subject: You're Registered! - {event.title}")
        app.logger.info(f"Amount: {_format_amount(registration)}")
        app.logger.info(f"Event URL: {event_url}")
        app.logger.info("--- END MOCK CONFIRMATION EMAIL ---")
        return

    msg = Message(
        f"You're Registered! - {event.title}",
        sender=("Evently", app.config.get("MAIL_USERNAME")),
        recipients=[registration.attendee_email],
    )
    msg.body = f"""
Hi {registration.attendee_name or "there"},

Your registration for "{event.title}" is confirmed.

Amount paid: {_format_amount(registration)}
Registration ID: {registration.id}

Event details: {event_url}

See you there!
The Evently Team
"""

    Thread(target=send_async_email, args=(app, msg)).start()


def send_cancellation_email(registration, event):
    if not registration.attendee_email:
        current_app.logger.info(
            f"No email on registration {registration.id}; skipping cancellation notice"
        )
        return

    app = current_app._get_current_object()

    if app.testing:
        app.logger.info("--- MOCK CANCELLATION EMAIL ---")
        app.logger.info(f"To: {registration.attendee_email}")
        app.logger.info(f"Subject: Registration Cancelled - {event.title}")
        app.logger.info("--- END MOCK CANCELLATION EMAIL ---")
        return

    msg = Message(
        f"Registration Cancelled - {event.title}",
        sender=("Evently", app.config.get("MAIL_USERNAME")),
        recipients=[registration.attendee_email],
    )
    msg.body = f"""
Hi {registration.attendee_name or "there"},

Your registration for "{event.title}" has been cancelled.

If this wasn't you, or you change your mind, you can register again from
{app.config.get('CLIENT_URL')}/events/{event.id} while spots remain.

Thanks!
The Evently Team
"""

    Thread(target=send_async_email, args=(app, msg)).start()


def notify(send, registration, event):
    """Fire a notification; delivery problems never reach the caller."""
    try:
        send(registration, event)
    except Exception as e:
        current_app.logger.error(
            f"Failed to queue {send.__name__} for registration {registration.id}: {e}"
        )
