"""
Credential Setup Notifier

Best-effort step run after a driver is provisioned: generate a password setup
link and, when an email sender is configured, mail it to the driver. Nothing
here can fail a provisioning call; the account is usable without the email.
"""

import html
import logging
from typing import Optional

from .email_sender import EmailSender
from .identity_gateway import IdentityGateway, IdentityGatewayError

logger = logging.getLogger(__name__)

SUBJECT = "Set up your driver account password"


class CredentialSetupNotifier:
    """
    Generates credential-setup links and delivers them by email.

    Args:
        gateway: Identity gateway used to generate the link
        email_sender: Optional sender; without one the link is only returned
        redirect_to: Optional URL the link redirects to after use
    """

    def __init__(
        self,
        gateway: IdentityGateway,
        email_sender: Optional[EmailSender] = None,
        redirect_to: Optional[str] = None,
    ):
        self.gateway = gateway
        self.email_sender = email_sender
        self.redirect_to = redirect_to

    def notify_credential_setup(
        self, email: str, full_name: str, identity_id: str
    ) -> Optional[str]:
        """
        Generate a credential-setup link and email it if possible.

        Args:
            email: Driver email address
            full_name: Driver name used in the greeting
            identity_id: Identity the link belongs to (for logging)

        Returns:
            The link, or None when it could not be generated
        """
        try:
            link = self.gateway.generate_credential_link(email, redirect_to=self.redirect_to)
        except IdentityGatewayError as e:
            logger.warning(f"Could not generate credential link for {identity_id} ({email}): {e}")
            return None

        if self.email_sender is None:
            logger.info(f"No email sender configured; returning credential link for {identity_id}")
            return link

        try:
            result = self.email_sender.send(
                to=email,
                subject=SUBJECT,
                html=self._render_body(full_name, link),
            )
            if not result.success:
                logger.warning(f"Credential email to {email} not sent: {result.error}")
        except Exception as e:
            logger.warning(f"Credential email to {email} failed: {e}", exc_info=True)

        return link

    @staticmethod
    def _render_body(full_name: str, link: str) -> str:
        name = html.escape(full_name or "there")
        href = html.escape(link, quote=True)
        return f"""<p>Hi {name},</p>
<p>An account has been created for you on the driver app.</p>
<p><a href="{href}">Set your password</a> to finish setting it up. The link can only be used once and expires soon.</p>
<p>If you were not expecting this email you can ignore it.</p>
"""
