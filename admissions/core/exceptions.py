"""Custom exceptions for the admissions service"""


class AdmissionsServiceError(Exception):
    """Base exception for the admissions service"""
    status_code = 500

    def __init__(self, message: str, errors: list = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or [message]


class NotFoundError(AdmissionsServiceError):
    """Plan, subscription, transaction or account not found"""
    status_code = 404


class ConflictError(AdmissionsServiceError):
    """Request conflicts with current state (duplicate active subscription, fee already paid)"""
    status_code = 409


class ValidationError(AdmissionsServiceError):
    """Request is well-formed but not acceptable"""
    status_code = 400


class AuthenticationError(AdmissionsServiceError):
    """Missing or invalid credentials"""
    status_code = 401


class PermissionDeniedError(AdmissionsServiceError):
    """Authenticated but not allowed"""
    status_code = 403


class GatewayError(AdmissionsServiceError):
    """Payment gateway call failed or was rejected"""
    status_code = 502

    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        super().__init__(message)
        self.gateway_status_code = status_code
        self.response_data = response_data or {}


class PaymentInitError(AdmissionsServiceError):
    """Gateway rejected payment initialization"""
    status_code = 502


class PaymentFailedError(AdmissionsServiceError):
    """Gateway reported the charge as not successful"""
    status_code = 400

    def __init__(self, message: str, reference: str = None, gateway_response: str = None):
        super().__init__(message)
        self.reference = reference
        self.gateway_response = gateway_response


class SignatureError(AdmissionsServiceError):
    """Webhook signature mismatch"""
    status_code = 400


class IntegrityError(AdmissionsServiceError):
    """Ledger arithmetic would leave inconsistent state (e.g. negative balance)"""
    status_code = 500
