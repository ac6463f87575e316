"""Alert notification channels.

Every adapter implements `send(destination, message) -> None` and raises
ChannelSendError when the message was not accepted.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from alerts.errors import ChannelSendError
from models.enums import ChannelType
from utils.http_client import APIError, HTTPClient

logger = logging.getLogger("alertmonitor.alerts.channels")


@runtime_checkable
class AlertChannel(Protocol):
    def send(self, destination: str, message: str) -> None: ...


class ConsoleChannel:
    """Print alerts to terminal with rich formatting."""

    def __init__(self, console=None):
        from rich.console import Console
        self.console = console or Console()

    def send(self, destination, message):
        from rich.markup import escape
        style = "bold yellow" if message.startswith("TEST - ") else "bold white on red"
        label = escape(f"[ALERT -> {destination}]" if destination else "[ALERT]")
        self.console.print(f"[{style}]{label}[/] {escape(message)}", markup=True, highlight=False)


class FileChannel:
    """Append alerts to a JSON lines log file.

    The destination, when set, overrides the default log path.
    """

    def __init__(self, log_path="data/alerts.jsonl"):
        self.log_path = log_path
        self._lock = threading.Lock()

    def send(self, destination, message):
        path = Path(destination or self.log_path)
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": message,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, open(path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            raise ChannelSendError(f"Failed to write alert to {path}: {e}", channel="file") from e


class EmailChannel:
    """Email alert channel. The first line of the message is the subject."""

    def __init__(self, sender):
        self.sender = sender

    def send(self, destination, message):
        subject, _, body = message.partition("\n")
        self.sender.send_alert(destination, subject.strip(), body.strip() or subject.strip())


class WhatsAppChannel:
    """WhatsApp alert channel over the messaging API client."""

    def __init__(self, client):
        self.client = client

    def send(self, destination, message):
        if not self.client.is_configured():
            raise ChannelSendError("WhatsApp API is not configured", channel="whatsapp")
        if not self.client.normalize_number(destination):
            raise ChannelSendError(f"Invalid WhatsApp number: {destination!r}", channel="whatsapp")
        try:
            self.client.send_text(destination, message)
        except APIError as e:
            raise ChannelSendError(f"WhatsApp send failed: {e}", channel="whatsapp",
                                   status_code=e.status_code) from e


class WebhookChannel:
    """POST the rendered message to the destination URL. Non-2xx is a failure."""

    def __init__(self, http=None, headers=None, timeout=10):
        self.http = http or HTTPClient(timeout=timeout, max_retries=0)
        self.headers = dict(headers or {})

    def send(self, destination, message):
        if not destination.startswith(("http://", "https://")):
            raise ChannelSendError(f"Invalid webhook URL: {destination!r}", channel="webhook")
        headers = {"Content-Type": "application/json", **self.headers}
        try:
            self.http.post(destination, data=message.encode("utf-8"), headers=headers)
        except APIError as e:
            raise ChannelSendError(f"Webhook delivery failed: {e}", channel="webhook",
                                   status_code=e.status_code) from e


def build_adapters(config: dict) -> dict:
    """Instantiate the adapters enabled under `channels` in config."""
    from notifications.email_sender import EmailSender
    from notifications.whatsapp_client import WhatsAppClient

    channels_cfg = config.get("channels", {})
    timeout = config.get("dispatch", {}).get("channel_timeout", 10)
    adapters = {}

    if channels_cfg.get("console", {}).get("enabled", True):
        adapters[ChannelType.CONSOLE] = ConsoleChannel()

    file_cfg = channels_cfg.get("file", {})
    if file_cfg.get("enabled", True):
        adapters[ChannelType.FILE] = FileChannel(file_cfg.get("path", "data/alerts.jsonl"))

    if channels_cfg.get("email", {}).get("enabled", False):
        adapters[ChannelType.EMAIL] = EmailChannel(EmailSender(config, timeout=timeout))

    wa_cfg = channels_cfg.get("whatsapp", {})
    if wa_cfg.get("enabled", False):
        client = WhatsAppClient(
            wa_cfg.get("api_url", ""), wa_cfg.get("instance_name", ""),
            wa_cfg.get("api_key", ""), timeout=timeout,
        )
        adapters[ChannelType.WHATSAPP] = WhatsAppChannel(client)

    hook_cfg = channels_cfg.get("webhook", {})
    if hook_cfg.get("enabled", False):
        adapters[ChannelType.WEBHOOK] = WebhookChannel(headers=hook_cfg.get("headers"),
                                                       timeout=timeout)

    logger.info(f"Channel adapters enabled: {', '.join(sorted(c.value for c in adapters)) or 'none'}")
    return adapters
