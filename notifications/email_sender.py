"""
SMTP email sender for alert notifications.

Handles:
  - SMTP connection with TLS
  - MIME multipart construction (plaintext + minimal HTML)
  - Credential management (env vars > config file)

No external dependencies beyond Python stdlib (email, smtplib, ssl).
"""
import os
import ssl
import html
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate

from alerts.errors import ChannelSendError

logger = logging.getLogger("alertmonitor.notifications.email_sender")


class EmailSender:
    """
    SMTP email sender.

    Credential resolution order:
      1. Environment variables: ALERT_MONITOR_SMTP_USER, ALERT_MONITOR_SMTP_PASS
      2. Config file: channels.email.smtp_username, channels.email.smtp_password
    """

    def __init__(self, config: dict, timeout: float = 10):
        email_config = config.get("channels", {}).get("email", {})
        self.smtp_host = email_config.get("smtp_host", "")
        self.smtp_port = email_config.get("smtp_port", 587)
        self.use_tls = email_config.get("use_tls", True)
        self.from_address = email_config.get("from_address", "")
        self.from_name = email_config.get("from_name", "Alert Monitor")
        self.timeout = timeout

        # Credential resolution: env vars take priority
        self.username = os.environ.get(
            "ALERT_MONITOR_SMTP_USER",
            email_config.get("smtp_username", ""),
        )
        self.password = os.environ.get(
            "ALERT_MONITOR_SMTP_PASS",
            email_config.get("smtp_password", ""),
        )

    def is_configured(self) -> bool:
        """Check if all required SMTP fields are present."""
        return all([self.smtp_host, self.from_address, self.username, self.password])

    def send_alert(self, to_address: str, subject: str, body: str) -> None:
        """Send one alert email. Raises ChannelSendError on any failure."""
        if not self.is_configured():
            raise ChannelSendError("SMTP is not configured", channel="email")
        if not to_address:
            raise ChannelSendError("No recipient address", channel="email")

        body_html = "<br>".join(html.escape(line) for line in body.splitlines())
        page = f"""
        <div style="font-family: system-ui, sans-serif; max-width: 600px; margin: 0 auto;
                    padding: 20px; color: #333;">
            <h2 style="color: #dc3545; margin-top: 0;">{html.escape(subject)}</h2>
            <div style="background: #f8d7da; padding: 16px; border-radius: 6px;
                        border-left: 4px solid #dc3545;">{body_html}</div>
            <p style="color: #666; font-size: 12px; margin-top: 16px;">
                Automated alert from Alert Monitor
            </p>
        </div>
        """

        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = to_address
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(body, "plain", "utf-8"))
        msg.attach(MIMEText(page, "html", "utf-8"))

        self._send(msg)

    def test_connection(self) -> dict:
        """Test SMTP connectivity without sending an email."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                return {"status": "ok", "message": "SMTP connection successful",
                        "server_response": str(server.noop())}
        except smtplib.SMTPAuthenticationError as e:
            return {"status": "error", "message": f"Authentication failed: {e}"}
        except smtplib.SMTPConnectError as e:
            return {"status": "error", "message": f"Connection failed: {e}"}
        except Exception as e:
            return {"status": "error", "message": str(e)}

    def _send(self, msg: MIMEMultipart) -> None:
        """Internal: send a constructed MIME message via SMTP."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']}: {msg['Subject']}")
        except smtplib.SMTPAuthenticationError as e:
            raise ChannelSendError("SMTP authentication failed. Check username/password.",
                                   channel="email") from e
        except smtplib.SMTPRecipientsRefused as e:
            raise ChannelSendError(f"Recipient refused: {msg['To']}", channel="email") from e
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelSendError(f"Email send failed: {e}", channel="email") from e
