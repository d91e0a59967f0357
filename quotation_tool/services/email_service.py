"""
Email service for quotation notifications.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message
from markupsafe import Markup, escape

logger = logging.getLogger(__name__)

mail = Mail()


class EmailDeliveryError(Exception):
    """SMTP delivery failed; the notification dispatcher records it and retries later."""


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _html_body(body: str, primary_color: str) -> str:
    paragraphs = "".join(
        f"<p>{Markup('<br/>').join(escape(chunk).split(chr(10)))}</p>" for chunk in body.split("\n\n")
    )
    primary_color = escape(primary_color)
    return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
            <style>
                body {{ font-family: Arial, sans-serif; color: #333; }}
                .container {{ max-width: 600px; margin: auto; padding: 20px; }}
                .bar {{ background: {primary_color}; height: 6px; }}
                .content {{ background: #fff; padding: 30px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="bar"></div>
                <div class="content">{paragraphs}</div>
            </div>
        </body>
        </html>
        """


def send_notification_email(to_email: str, subject: str, body: str, primary_color: str = "#3B82F6") -> bool:
    """
    Send a quotation notification e-mail.

    Returns:
        True if sent, False if mail is disabled (nothing was attempted)

    Raises:
        EmailDeliveryError: if the SMTP server rejected or could not take the message
    """
    if not _mail_enabled():
        logger.warning(f"[MAIL DISABLED] Notification email skipped for {to_email}")
        return False

    msg = Message(
        subject=subject,
        recipients=[to_email],
        body=body,
        html=_html_body(body, primary_color),
    )

    try:
        logger.info(f"[EMAIL] Sending '{subject}' to {to_email} via {current_app.config.get('MAIL_SERVER')}")
        mail.send(msg)
    except Exception as e:
        logger.exception(f"[EMAIL] Failed to send email to {to_email}: {e}")
        raise EmailDeliveryError(str(e)) from e

    logger.info(f"[EMAIL] Email sent to {to_email}")
    return True
