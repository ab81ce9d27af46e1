"""
Tests for password hashing, JWT handling and the account flows
"""

from datetime import timedelta

import pytest

from admissions.core.exceptions import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
)
from admissions.models import Subscription, SubscriptionStatus, UserStatus, AdminStatus
from admissions.services.auth_service import (
    AuthService, UserAuthService, AdminAuthService, SCOPE_USER, SCOPE_ADMIN
)
from admissions.utils.dates import utc_now
from seed_super_admin import seed_super_admin

from conftest import TEST_PASSWORD


@pytest.fixture
def auth_service(db, email_service, subscription_service) -> UserAuthService:
    return UserAuthService(db, email_service, subscription_service)


def register(service, email="ngozi@example.com", password="Secret123!"):
    return service.register(first_name="Ngozi", last_name="Eze", email=email, password=password)


class TestPasswords:

    def test_hash_and_verify(self):
        hashed = AuthService.get_password_hash("Secret123!")

        assert hashed != "Secret123!"
        assert AuthService.verify_password("Secret123!", hashed) is True
        assert AuthService.verify_password("wrong", hashed) is False

    def test_short_password_rejected(self):
        with pytest.raises(ValidationError, match="at least 8 characters"):
            AuthService.validate_password("short")


class TestTokens:

    def test_access_token_round_trip(self):
        token = AuthService.create_access_token("user-1", SCOPE_USER, version=3)

        payload = AuthService.decode_token(token, scope=SCOPE_USER)

        assert payload["sub"] == "user-1"
        assert payload["ver"] == 3
        assert payload["type"] == "access"

    def test_refresh_token_is_not_an_access_token(self):
        refresh = AuthService.create_refresh_token("user-1", SCOPE_USER)

        with pytest.raises(AuthenticationError):
            AuthService.decode_token(refresh, token_type="access")

    def test_user_token_rejected_for_admin_scope(self):
        token = AuthService.create_access_token("user-1", SCOPE_USER)

        with pytest.raises(AuthenticationError, match="Invalid token scope"):
            AuthService.decode_token(token, scope=SCOPE_ADMIN)

    def test_expired_token(self):
        token = AuthService.create_access_token("user-1", SCOPE_USER, expires_delta=timedelta(seconds=-10))

        with pytest.raises(AuthenticationError, match="Token has expired"):
            AuthService.decode_token(token)

    def test_garbage_token(self):
        with pytest.raises(AuthenticationError, match="Invalid token"):
            AuthService.decode_token("not-a-jwt")

    def test_token_pair(self):
        pair = AuthService.create_token_pair("user-1", SCOPE_USER)

        assert pair["token_type"] == "bearer"
        assert pair["expires_in"] > 0
        assert AuthService.decode_token(pair["refresh_token"], token_type="refresh")["sub"] == "user-1"

    def test_generate_code(self):
        code = AuthService.generate_code()

        assert len(code) == 6
        assert code.isdigit()


class TestRegister:

    def test_register_creates_default_subscription(self, auth_service, email_service, plans, db):
        result = register(auth_service)

        user = result["user"]
        assert user["email"] == "ngozi@example.com"
        assert user["is_email_verified"] is False
        assert result["tokens"]["access_token"]

        subscription = db.query(Subscription).filter(Subscription.user_id == user["id"]).one()
        assert subscription.status == SubscriptionStatus.PENDING
        assert subscription.plan.type.value == "early_bird"

        email_service.send_email.assert_called_once()
        assert email_service.send_email.call_args.kwargs["to_email"] == "ngozi@example.com"

    def test_register_without_plans_still_succeeds(self, auth_service, db):
        result = register(auth_service)

        assert result["user"]["id"]
        assert db.query(Subscription).count() == 0

    def test_email_is_normalized(self, auth_service, plans):
        result = register(auth_service, email="  Ngozi@Example.COM ")

        assert result["user"]["email"] == "ngozi@example.com"

    def test_duplicate_email(self, auth_service, user):
        with pytest.raises(ConflictError, match="already exists"):
            register(auth_service, email=user.email)

    def test_weak_password(self, auth_service):
        with pytest.raises(ValidationError):
            register(auth_service, password="short")


class TestLogin:

    def test_login(self, auth_service, user):
        result = auth_service.login(user.email, TEST_PASSWORD)

        payload = AuthService.decode_token(result["tokens"]["access_token"], scope=SCOPE_USER)
        assert payload["sub"] == user.id
        assert payload["email"] == user.email

    def test_wrong_password(self, auth_service, user):
        with pytest.raises(AuthenticationError, match="Invalid email or password"):
            auth_service.login(user.email, "wrong-password")

    def test_unknown_email(self, auth_service):
        with pytest.raises(AuthenticationError, match="Invalid email or password"):
            auth_service.login("nobody@example.com", TEST_PASSWORD)

    def test_suspended_account(self, auth_service, user, db):
        user.status = UserStatus.SUSPENDED
        db.commit()

        with pytest.raises(PermissionDeniedError):
            auth_service.login(user.email, TEST_PASSWORD)


class TestRefreshAndLogout:

    def test_refresh(self, auth_service, user):
        tokens = auth_service.login(user.email, TEST_PASSWORD)["tokens"]

        result = auth_service.refresh(tokens["refresh_token"])

        assert result["user"]["id"] == user.id
        assert result["tokens"]["access_token"]

    def test_logout_all_revokes_refresh_tokens(self, auth_service, user):
        tokens = auth_service.login(user.email, TEST_PASSWORD)["tokens"]

        auth_service.logout_all(user.id)

        with pytest.raises(AuthenticationError, match="Invalid refresh token"):
            auth_service.refresh(tokens["refresh_token"])

    def test_access_token_cannot_refresh(self, auth_service, user):
        tokens = auth_service.login(user.email, TEST_PASSWORD)["tokens"]

        with pytest.raises(AuthenticationError):
            auth_service.refresh(tokens["access_token"])


class TestEmailVerification:

    def test_verify_email(self, auth_service, email_service, user, db):
        user.email_verification_token = "123456"
        db.commit()

        verified = auth_service.verify_email("123456")

        assert verified.is_email_verified is True
        assert verified.email_verification_token is None
        email_service.send_email.assert_called_once()

    def test_wrong_code(self, auth_service, user):
        with pytest.raises(ValidationError, match="Invalid or expired verification token"):
            auth_service.verify_email("000000")

    def test_resend(self, auth_service, email_service, user, db):
        auth_service.resend_verification(user.email)

        db.refresh(user)
        assert len(user.email_verification_token) == 6
        email_service.send_email.assert_called_once()

    def test_resend_when_verified(self, auth_service, user, db):
        user.is_email_verified = True
        db.commit()

        with pytest.raises(ValidationError, match="already verified"):
            auth_service.resend_verification(user.email)

    def test_resend_unknown(self, auth_service):
        with pytest.raises(NotFoundError):
            auth_service.resend_verification("nobody@example.com")


class TestPasswordReset:

    def test_reset_flow(self, auth_service, email_service, user, db):
        old_tokens = auth_service.login(user.email, TEST_PASSWORD)["tokens"]

        auth_service.forgot_password(user.email)
        db.refresh(user)
        code = user.password_reset_token
        assert len(code) == 6
        email_service.send_email.assert_called_once()

        auth_service.reset_password(code, "BrandNew123!")

        assert auth_service.login(user.email, "BrandNew123!")["tokens"]["access_token"]
        with pytest.raises(AuthenticationError):
            auth_service.login(user.email, TEST_PASSWORD)
        with pytest.raises(AuthenticationError):
            auth_service.refresh(old_tokens["refresh_token"])

    def test_unknown_email_is_silent(self, auth_service, email_service):
        auth_service.forgot_password("nobody@example.com")

        email_service.send_email.assert_not_called()

    def test_expired_code(self, auth_service, user, db):
        user.password_reset_token = "654321"
        user.password_reset_expires = utc_now() - timedelta(minutes=1)
        db.commit()

        with pytest.raises(ValidationError):
            auth_service.reset_password("654321", "BrandNew123!")

    def test_change_password(self, auth_service, user):
        auth_service.change_password(user.id, TEST_PASSWORD, "Changed123!")

        assert auth_service.login(user.email, "Changed123!")

    def test_change_password_wrong_current(self, auth_service, user):
        with pytest.raises(AuthenticationError, match="Current password is incorrect"):
            auth_service.change_password(user.id, "wrong", "Changed123!")


class TestAdminAuth:

    def test_admin_login(self, db):
        admin = seed_super_admin(db, "root@example.com", "RootPass123!")

        result = AdminAuthService(db).login("root@example.com", "RootPass123!")

        assert result["admin"].id == admin.id
        payload = AuthService.decode_token(result["tokens"]["access_token"], scope=SCOPE_ADMIN)
        assert payload["role"] == "super_admin"

    def test_seed_is_skipped_when_super_admin_exists(self, db):
        seed_super_admin(db, "root@example.com", "RootPass123!")

        assert seed_super_admin(db, "other@example.com", "OtherPass123!") is None

    def test_inactive_admin(self, db):
        admin = seed_super_admin(db, "root@example.com", "RootPass123!")
        admin.status = AdminStatus.SUSPENDED
        db.commit()

        with pytest.raises(PermissionDeniedError):
            AdminAuthService(db).login("root@example.com", "RootPass123!")

    def test_user_credentials_do_not_work_for_admin(self, db, user):
        with pytest.raises(AuthenticationError):
            AdminAuthService(db).login(user.email, TEST_PASSWORD)
