"""WhatsApp messaging client for an Evolution-style HTTP API.

Uses raw HTTP POST via requests, through utils.http_client.
"""
import re
import logging

from utils.http_client import HTTPClient

logger = logging.getLogger("alertmonitor.whatsapp")


class WhatsAppClient:
    """Thin wrapper around the instance's sendText endpoint."""

    def __init__(self, api_url: str, instance_name: str, api_key: str, timeout: float = 10):
        self.api_url = (api_url or "").rstrip("/")
        self.instance_name = instance_name
        self.api_key = api_key
        self.http = HTTPClient(self.api_url, timeout=timeout, max_retries=0,
                               headers={"apikey": api_key or ""})

    def is_configured(self) -> bool:
        return all([self.api_url, self.instance_name, self.api_key])

    @staticmethod
    def normalize_number(number: str) -> str:
        """Strip everything but digits: '+55 (11) 9999-0000' -> '551199990000'."""
        return re.sub(r"\D", "", number or "")

    def send_text(self, number: str, text: str) -> dict:
        """Send a text message. Returns the API response body."""
        payload = {"number": self.normalize_number(number), "text": text}
        data = self.http.post(f"/message/sendText/{self.instance_name}", json=payload)
        logger.debug("WhatsApp message accepted for %s", payload["number"])
        return data
