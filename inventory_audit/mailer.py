"""
Delivery of password reset emails.

When no SMTP host is configured the reset link is written to the log, which
is what development and test setups use.
"""
import logging
import smtplib
from email.message import EmailMessage

from . import config

logger = logging.getLogger(__name__)


class LoggingEmailSender:
    """Writes reset links to the log instead of sending mail."""

    def send_password_reset_email(self, to_email: str, token: str, reset_url: str) -> None:
        logger.info(f"Password reset requested for {to_email}: {reset_url}")


class SmtpEmailSender:
    """Sends reset links through an SMTP relay."""

    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        username: str = config.SMTP_USERNAME,
        password: str = config.SMTP_PASSWORD,
        sender: str = config.SMTP_FROM,
        starttls: bool = config.SMTP_STARTTLS,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.starttls = starttls

    def send_password_reset_email(self, to_email: str, token: str, reset_url: str) -> None:
        message = EmailMessage()
        message["Subject"] = "Password reset request"
        message["From"] = self.sender
        message["To"] = to_email
        message.set_content(
            "A password reset was requested for your account.\n\n"
            f"Open the following link to choose a new password:\n{reset_url}\n\n"
            f"Or enter this reset code: {token}\n\n"
            f"The link expires in {config.PASSWORD_RESET_TOKEN_EXPIRATION_HOURS} hour(s). "
            "If you did not request a reset, ignore this email."
        )
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        logger.info(f"Password reset email sent to {to_email}")


def create_email_sender():
    """Build the sender selected by SMTP_HOST."""
    if config.SMTP_HOST:
        return SmtpEmailSender()
    return LoggingEmailSender()
