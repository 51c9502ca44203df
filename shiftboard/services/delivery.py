"""
Notification transports: SMTP email and Expo push.
Both raise NotificationDispatchFailed on transport errors.
"""
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from .errors import NotificationDispatchFailed


class SmtpEmailSender:
    """Sends plain-text email through the configured SMTP relay"""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        mail_from: Optional[str] = None,
    ):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username or settings.smtp_username
        self.password = password or settings.smtp_password
        self.use_tls = settings.smtp_tls if use_tls is None else use_tls
        self.mail_from = mail_from or settings.mail_from

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.mail_from)

    def send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port) as s:
                if self.use_tls:
                    s.starttls()
                if self.username and self.password:
                    s.login(self.username, self.password)
                s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDispatchFailed(f"Email to {to} failed: {e}") from e


class ExpoPushClient:
    """Client for the Expo push notification API"""

    def __init__(self, url: Optional[str] = None, access_token: Optional[str] = None, timeout: float = 15.0):
        self.url = url or settings.expo_push_url
        self.access_token = access_token or settings.expo_access_token
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Send one chunk of push messages.

        Returns:
            List of push tickets, one per message, in request order
        """
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=messages, headers=self._headers())
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationDispatchFailed(f"Push request failed: {e}") from e
        return body.get("data", []) if isinstance(body, dict) else []
