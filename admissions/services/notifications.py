"""
Transactional notification emails.

Every helper is fire-and-forget: delivery failures are logged and reported
as False, never raised into the calling flow.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..core.config import settings
from ..core.logging_config import get_logger
from .email_service import EmailService

logger = get_logger("notifications")


def _layout(title: str, body: str) -> str:
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; background: #f9fafb; padding: 24px;">
        <div style="max-width: 600px; margin: 0 auto; background: #ffffff; padding: 32px; border-radius: 8px;">
          <h2 style="color: #dc2626;">{title}</h2>
          {body}
          <p style="color: #6b7280; font-size: 13px; margin-top: 32px;">
            Questions? Contact us at <a href="mailto:{settings.SUPPORT_EMAIL}">{settings.SUPPORT_EMAIL}</a>.<br>
            &copy; {datetime.now().year} {settings.APP_NAME}. All rights reserved.
          </p>
        </div>
      </body>
    </html>
    """


def _deliver(email_service: Optional[EmailService], to_email: str, subject: str,
             html: str, text: str, to_name: Optional[str] = None) -> bool:
    if email_service is None:
        return False
    try:
        return email_service.send_email(
            to_email=to_email,
            subject=subject,
            html_content=html,
            text_content=text,
            to_name=to_name
        )
    except Exception as e:
        logger.error(f"Failed to send '{subject}' to {to_email}: {e}")
        return False


def send_verification_email(email_service, to_email: str, first_name: str, code: str) -> bool:
    body = f"""
      <p>Hi {first_name},</p>
      <p>Use the code below to verify your email address:</p>
      <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>
    """
    text = f"Hi {first_name},\n\nYour {settings.APP_NAME} verification code is {code}."
    return _deliver(email_service, to_email, f"Verify your {settings.APP_NAME} account",
                    _layout("Verify your email", body), text, first_name)


def send_password_reset_email(email_service, to_email: str, first_name: str, code: str) -> bool:
    body = f"""
      <p>Hi {first_name},</p>
      <p>We received a request to reset your password. Your reset code is:</p>
      <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>
      <p>This code expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes. If you did not request it, ignore this email.</p>
    """
    text = (
        f"Hi {first_name},\n\nYour password reset code is {code}. "
        f"It expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes."
    )
    return _deliver(email_service, to_email, "Reset your password",
                    _layout("Password reset", body), text, first_name)


def send_welcome_email(email_service, to_email: str, first_name: str) -> bool:
    body = f"""
      <p>Hi {first_name},</p>
      <p>Your email is verified. Welcome to {settings.APP_NAME}!</p>
      <p>Next step: <a href="{settings.FRONTEND_URL}/student">pay your application fee and choose a payment plan</a>.</p>
    """
    text = f"Hi {first_name},\n\nWelcome to {settings.APP_NAME}! Visit {settings.FRONTEND_URL}/student to continue."
    return _deliver(email_service, to_email, f"Welcome to {settings.APP_NAME}",
                    _layout("Welcome aboard", body), text, first_name)


def send_subscription_confirmation(email_service, to_email: str, first_name: str) -> bool:
    body = f"""
      <p><strong>Hey {first_name},</strong></p>
      <p>Great news! Your payment has been received and your admission is now fully activated.</p>
      <p>The next phase is onboarding. Our team will reach out with your student setup details
         and an invitation to the community channel.</p>
    """
    text = (
        f"Hey {first_name},\n\nGreat news! Your payment has been received and your admission "
        f"is now fully activated. Our team will reach out with onboarding details."
    )
    return _deliver(email_service, to_email, f"You're all set, {first_name}",
                    _layout("Payment received", body), text, first_name)


def send_application_fee_confirmation(email_service, to_email: str, first_name: str,
                                      amount: Decimal, reference: str) -> bool:
    body = f"""
      <p>Hi {first_name},</p>
      <p>We received your application fee of <strong>NGN {amount:,.2f}</strong>.</p>
      <p>Reference: <code>{reference}</code></p>
      <p>You can now <a href="{settings.FRONTEND_URL}/student">choose a payment plan</a> to complete your admission.</p>
    """
    text = f"Hi {first_name},\n\nWe received your application fee of NGN {amount:,.2f}. Reference: {reference}."
    return _deliver(email_service, to_email, "Application fee received",
                    _layout("Application fee confirmed", body), text, first_name)
