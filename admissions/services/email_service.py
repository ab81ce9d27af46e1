import os
from typing import Optional

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from ..core.logging_config import get_logger


class EmailService:
    """Service for sending transactional emails via Brevo (formerly Sendinblue)"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None
    ):
        self.logger = get_logger("email_service")

        self.api_key = api_key or os.environ.get("BREVO_API_KEY")
        self.default_from_email = from_email or os.environ.get("BREVO_FROM_EMAIL", "noreply@cloudtopg.com")
        self.default_from_name = from_name or os.environ.get("BREVO_FROM_NAME", "Cloud Top G")
        self.brevo_api = None

        if not self.api_key:
            self.logger.warning("BREVO_API_KEY not set - emails will be logged and skipped")
            return

        configuration = sib_api_v3_sdk.Configuration()
        configuration.api_key["api-key"] = self.api_key
        api_client = sib_api_v3_sdk.ApiClient(configuration)
        self.brevo_api = sib_api_v3_sdk.TransactionalEmailsApi(api_client)

        self.logger.info("Brevo client initialized successfully")

    @property
    def enabled(self) -> bool:
        return self.brevo_api is not None

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        to_name: Optional[str] = None
    ) -> bool:
        """
        Send an email via Brevo

        Returns:
            True when Brevo accepted the message, False otherwise
        """
        if not self.enabled:
            self.logger.info(f"Email to {to_email} skipped (Brevo disabled): {subject}")
            return False

        recipient = {"email": to_email}
        if to_name:
            recipient["name"] = to_name

        brevo_email = sib_api_v3_sdk.SendSmtpEmail(
            sender={"name": self.default_from_name, "email": self.default_from_email},
            to=[recipient],
            subject=subject,
            html_content=html_content,
            text_content=text_content
        )

        try:
            response = self.brevo_api.send_transac_email(brevo_email)
        except ApiException as e:
            self.logger.bind(recipient=to_email).error(f"Brevo API error: {e.status} - {e.reason}")
            return False

        message_id = response.message_id if hasattr(response, "message_id") else None
        self.logger.bind(recipient=to_email, message_id=message_id).info(f"Email sent: {subject}")
        return True
