# utils/email_utils.py
from datetime import datetime
from email.message import EmailMessage
import logging
import smtplib

from flask import current_app

logger = logging.getLogger(__name__)


def _mail_configured():
    return bool(current_app.config.get('EMAIL_SENDER') and current_app.config.get('EMAIL_PASSWORD'))


def send_email(recipients, subject, body):
    """Send an email via SMTP.

    Without credentials the message is logged instead of sent, so local
    development and tests never talk to a mail server.
    """
    if isinstance(recipients, str):
        recipients = [recipients]

    if not _mail_configured():
        logger.info("[mock email] to=%s subject=%s", recipients, subject)
        logger.debug("[mock email] body=%s", body)
        return False

    msg = EmailMessage()
    msg['Subject'] = subject
    msg['From'] = current_app.config['EMAIL_SENDER']
    msg['To'] = ', '.join(recipients)
    msg.set_content(body)

    try:
        with smtplib.SMTP(current_app.config['SMTP_SERVER'], current_app.config['SMTP_PORT']) as smtp:
            smtp.starttls()
            smtp.login(current_app.config['EMAIL_SENDER'], current_app.config['EMAIL_PASSWORD'])
            smtp.send_message(msg)
        logger.info("Email sent to %s", recipients)
        return True
    except Exception as e:
        logger.exception("Failed to send email: %s", e)
        raise


def send_login_notification(email, ip, user_agent):
    subject = "Security Alert: New Admin Login Detected"
    body = (
        "A new login was detected for your administrative account.\n\n"
        f"Account: {email}\n"
        f"Time: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC\n"
        f"IP Address: {ip}\n"
        f"Device: {user_agent}\n\n"
        "If this was not you, please contact support immediately."
    )
    try:
        send_email([email], subject, body)
    except (smtplib.SMTPException, OSError):
        logger.error("Login notification for %s was not delivered", email)


def send_invoice_email(to, invoice):
    """Mail an invoice summary to the client. Delivery problems are logged, not raised."""
    due = invoice.due_date.strftime('%Y-%m-%d') if invoice.due_date else 'On receipt'
    subject = f"Invoice {invoice.reference_number} from AkaTech IT Solution"
    body = (
        "Dear Customer,\n\n"
        f"Please find your invoice {invoice.reference_number} below.\n\n"
        f"Amount Due: GH₵ {invoice.amount}\n"
        f"Due Date: {due}\n\n"
        "Thank you for your business.\n"
        "AkaTech IT Solution"
    )
    try:
        return send_email([to], subject, body)
    except (smtplib.SMTPException, OSError):
        logger.error("Invoice email %s to %s was not delivered", invoice.reference_number, to)
        return False
