from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import List, Optional, Protocol

from accountkernel.logging import get_logger

logger = get_logger(__name__)

NOTIFICATION_FAILED = "notification_failed"


@dataclass(frozen=True)
class MailMessage:
    to: str
    from_address: str
    subject: str
    text: str
    html: str


class MailDispatcher(Protocol):
    def send(self, message: MailMessage) -> bool: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """SMTP mail dispatcher.

    Supports:
    - SMTP with STARTTLS or implicit SSL
    - Fallback to logging when not configured (dev mode)

    ``send`` never raises; every failure is logged and reported as False.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_name: str = "Electomart",
        timeout: float = 30,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_name = from_name
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host)

    def _build_mime(self, message: MailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = formataddr((self.from_name, message.from_address))
        msg["To"] = message.to
        msg.attach(MIMEText(message.text, "plain"))
        msg.attach(MIMEText(message.html, "html"))
        return msg

    def send(self, message: MailMessage) -> bool:
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=redact_email(message.to),
                subject=message.subject,
            )
            return True

        try:
            msg = self._build_mime(message)
            context = ssl.create_default_context()
            logger.debug(
                "email_connecting",
                host=self.smtp_host,
                port=self.smtp_port,
                use_tls=self.smtp_use_tls,
                to=redact_email(message.to),
            )

            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(message.from_address, [message.to], msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(message.from_address, [message.to], msg.as_string())

            logger.info("email_sent", to=redact_email(message.to), subject=message.subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=redact_email(message.to),
                host=self.smtp_host,
                error=str(e),
                error_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=redact_email(message.to),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=redact_email(message.to),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_connect_failed",
                to=redact_email(message.to),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False


def verification_code_email(
    *, app_name: str, sender: str, to: str, code: str, ttl_hours: int
) -> MailMessage:
    return MailMessage(
        to=to,
        from_address=sender,
        subject=f"Your {app_name} Email Verification Code",
        text=(
            f"Your verification code is: {code}\n\n"
            f"This code expires in {ttl_hours} hours."
        ),
        html=(
            f"<p>Your {app_name} verification code is: <b>{code}</b></p>"
            f"<p>This code expires in {ttl_hours} hours.</p>"
        ),
    )


def password_reset_email(
    *, app_name: str, sender: str, to: str, reset_url: str, ttl_minutes: int
) -> MailMessage:
    return MailMessage(
        to=to,
        from_address=sender,
        subject="Password Reset Request",
        text=(
            f"Reset your {app_name} password: {reset_url}\n\n"
            f"This link expires in {ttl_minutes} minutes. "
            "If you didn't request this, you can safely ignore this email."
        ),
        html=(
            f'<p>Click <a href="{reset_url}">here</a> to reset your password.</p>'
            f"<p>This link expires in {ttl_minutes} minutes.</p>"
        ),
    )


def dispatch_notification(
    mailer: MailDispatcher, message: MailMessage, *, purpose: str, account_id: str
) -> List[str]:
    """Send ``message`` and return the warnings to attach to the flow result.

    The account change that triggered the notification is already persisted,
    so a failed send is reported, never raised.
    """
    try:
        sent = mailer.send(message)
    except Exception as exc:
        logger.warning(
            NOTIFICATION_FAILED,
            purpose=purpose,
            account_id=account_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return [NOTIFICATION_FAILED]
    if not sent:
        logger.warning(NOTIFICATION_FAILED, purpose=purpose, account_id=account_id)
        return [NOTIFICATION_FAILED]
    return []
