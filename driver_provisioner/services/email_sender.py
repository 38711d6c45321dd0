"""
Email Sender - Resend Provider Implementation

Sends the credential-setup email through the Resend API.

Resend API Reference:
- Endpoint: POST https://api.resend.com/emails
- Auth: Bearer token in Authorization header
- Response: { id: "message_id" }
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import resend

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Result of an email send"""
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class EmailSender:
    """
    Resend-backed email sender.

    Usage:
        sender = EmailSender(api_key="re_...", from_address="noreply@example.com")
        result = sender.send(to="driver@example.com", subject="Hello", html="<p>Hi</p>")
    """

    def __init__(self, api_key: str, from_address: str):
        self.api_key = api_key
        self.from_address = from_address
        resend.api_key = api_key

    def send(self, to: str, subject: str, html: str) -> EmailResult:
        """
        Send an HTML email.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body

        Returns:
            EmailResult with send status
        """
        params: Dict[str, Any] = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }

        try:
            logger.info(f"Sending email to {to} via Resend")
            response = resend.Emails.send(params)
        except resend.exceptions.ResendError as e:
            logger.error(f"Resend API error sending to {to}: {e}")
            return EmailResult(success=False, error=str(e))

        provider_msg_id = None
        if isinstance(response, dict):
            provider_msg_id = response.get("id")
        elif hasattr(response, "id"):
            provider_msg_id = response.id

        logger.info(f"Email sent successfully: {provider_msg_id}")
        return EmailResult(success=True, provider_message_id=provider_msg_id)
