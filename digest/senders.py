"""Email delivery for the weekly trend report.

Supports:
- SmtpSender: Sends via any SMTP server (STARTTLS on 587, implicit TLS on 465)
- DemoSender: Writes the email to a local file without sending (for testing)

send_email() is the entry point used by the pipeline. It never raises:
every failure is logged and reported as False.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.policy import EmailPolicy
from pathlib import Path
from typing import List, Optional

from config.app_config import ReportConfig, SmtpConfig
from output.markdown_html import markdown_to_text

# Email policy for proper UTF-8 encoding
UTF8_POLICY = EmailPolicy(utf8=True)

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """Abstract base class for email senders."""

    @abstractmethod
    def send(
        self,
        to: List[str],
        subject: str,
        html_content: str,
        text_content: str,
    ) -> dict:
        """Send an email.

        Args:
            to: List of recipient email addresses
            subject: Email subject line
            html_content: HTML body content
            text_content: Plain text body content

        Returns:
            Dictionary with:
            - success: bool
            - message: str (success message or error details)
            - details: dict (optional additional info)
        """


class DemoSender(EmailSender):
    """Demo sender that records the email instead of sending it."""

    def __init__(self, output_path: Optional[str] = None):
        self.output_path = output_path

    def send(
        self,
        to: List[str],
        subject: str,
        html_content: str,
        text_content: str,
    ) -> dict:
        logger.info(
            "DEMO EMAIL SEND: to=%s subject=%s html=%d chars text=%d chars",
            ", ".join(to),
            subject,
            len(html_content),
            len(text_content),
        )

        if self.output_path:
            path = Path(self.output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(html_content, encoding="utf-8")
            path.with_suffix(".txt").write_text(text_content, encoding="utf-8")
            logger.info("Demo output written to: %s", self.output_path)

        return {
            "success": True,
            "message": "Demo send completed (no email actually sent)",
            "details": {
                "recipients": to,
                "subject": subject,
                "html_length": len(html_content),
                "text_length": len(text_content),
            },
        }


class SmtpSender(EmailSender):
    """Send emails through an SMTP server.

    Port 465 uses implicit TLS (SMTP_SSL); any other port uses a plain
    connection upgraded with STARTTLS when the server offers it.
    """

    def __init__(self, config: SmtpConfig):
        errors = validate_smtp_config(config)["errors"]
        if errors:
            raise ValueError(f"SMTP not configured: {'; '.join(errors)}")
        self.config = config

    def _connect(self) -> smtplib.SMTP:
        if self.config.port == 465:
            return smtplib.SMTP_SSL(self.config.host, self.config.port, timeout=self.config.timeout)

        server = smtplib.SMTP(self.config.host, self.config.port, timeout=self.config.timeout)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        return server

    def send(
        self,
        to: List[str],
        subject: str,
        html_content: str,
        text_content: str,
    ) -> dict:
        from_address = self.config.sender_address
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = from_address
            msg["To"] = ", ".join(to)

            # Text first, HTML second so clients prefer the HTML part
            msg.attach(MIMEText(text_content, "plain", "utf-8"))
            msg.attach(MIMEText(html_content, "html", "utf-8"))

            email_bytes = msg.as_bytes(policy=UTF8_POLICY)

            with self._connect() as server:
                server.login(self.config.user, self.config.password)
                server.sendmail(from_address, to, email_bytes)

            logger.info("Email sent via %s: recipients=%s, subject=%s", self.config.host, to, subject)
            return {
                "success": True,
                "message": f"Email sent successfully to {len(to)} recipient(s)",
                "details": {
                    "recipients": to,
                    "subject": subject,
                    "from": from_address,
                },
            }

        except smtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed for %s: %s", self.config.user, e)
            return {
                "success": False,
                "message": "SMTP authentication failed. Check SMTP_USER and SMTP_PASS.",
                "details": {"error": str(e)},
            }

        except Exception as e:
            logger.error("SMTP send failed: %s", e)
            return {
                "success": False,
                "message": f"SMTP send failed: {str(e)}",
                "details": {
                    "error": str(e),
                    "recipients": to,
                },
            }


def validate_smtp_config(config: SmtpConfig) -> dict:
    """Validate SMTP configuration.

    Returns:
        Dictionary with validation results
    """
    errors = []

    if not config.host:
        errors.append("SMTP_HOST not set")
    if not config.user:
        errors.append("SMTP_USER not set")
    if not config.password:
        errors.append("SMTP_PASS not set")
    if not config.sender_address:
        errors.append("SMTP_FROM not set")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "host": config.host,
        "port": config.port,
        "from_address": config.sender_address,
    }


def get_sender(
    send_mode: str,
    smtp_config: Optional[SmtpConfig] = None,
    output_path: Optional[str] = None,
) -> EmailSender:
    """Factory function to get appropriate email sender.

    Args:
        send_mode: "smtp" or "demo"
        smtp_config: SMTP settings (for smtp mode)
        output_path: Path for demo output (for demo mode)

    Returns:
        EmailSender instance

    Raises:
        ValueError: If the mode is unknown or SMTP is not configured
    """
    if send_mode == "demo":
        return DemoSender(output_path=output_path)
    elif send_mode == "smtp":
        return SmtpSender(smtp_config or SmtpConfig())
    else:
        raise ValueError(f"Unknown send mode: {send_mode}. Use 'smtp' or 'demo'.")


def send_email(
    to: List[str],
    subject: str,
    html_body: str,
    markdown_body: str,
    smtp_config: Optional[SmtpConfig] = None,
    report_config: Optional[ReportConfig] = None,
    sender: Optional[EmailSender] = None,
) -> bool:
    """Deliver the report. Never raises.

    Args:
        to: Recipient addresses
        subject: Subject line
        html_body: HTML body
        markdown_body: Markdown body, used to derive the plain-text part
        smtp_config: SMTP settings
        report_config: Selects smtp or demo mode
        sender: Explicit sender (overrides the configured mode)

    Returns:
        True if the message was accepted, False on any failure
    """
    if not to:
        logger.warning("No recipients configured; skipping email delivery")
        return False

    try:
        if sender is None:
            report_config = report_config or ReportConfig()
            sender = get_sender(
                report_config.send_mode,
                smtp_config=smtp_config,
                output_path=report_config.demo_output_path,
            )
        result = sender.send(
            to=to,
            subject=subject,
            html_content=html_body,
            text_content=markdown_to_text(markdown_body),
        )
    except Exception as e:
        logger.error("Email delivery failed: %s", e)
        return False

    if not result.get("success"):
        logger.warning("Email delivery failed: %s", result.get("message"))
        return False
    return True
