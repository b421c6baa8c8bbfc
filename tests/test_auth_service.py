"""Tests for registration, login, refresh, email verification and password reset."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pyotp
import pytest

from conftest import PASSWORD, token_from_link
from exchange_accounts.db.repositories import account_repo
from exchange_accounts.exceptions import (
    AccountSuspendedError,
    AlreadyVerifiedError,
    DuplicateAccountError,
    EmailNotVerifiedError,
    Invalid2FACodeError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidRefreshTokenError,
    InvalidTokenError,
    NotFoundError,
    TokenExpiredError,
    ValidationError,
)
from exchange_accounts.memory_store import audit_records
from exchange_accounts.models.account import RegisterRequest
from exchange_accounts.models.auth import LoginResult, TwoFactorChallenge
from exchange_accounts.services import auth_service, token_service


def _verification_token(mailer) -> str:
    return token_from_link(mailer.verification.call_args.args[2])


class TestRegistration:

    @pytest.mark.asyncio
    async def test_first_account_is_admin_second_is_user(self):
        """First account in an empty system should be promoted to admin."""
        first = await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))
        second = await auth_service.register(RegisterRequest(email="b@example.com", password=PASSWORD))
        assert first.user.role == "admin"
        assert second.user.role == "user"

    @pytest.mark.asyncio
    async def test_concurrent_first_registrations_yield_one_admin(self):
        """Simultaneous registrations into an empty store should promote exactly one account."""
        results = await asyncio.gather(*(
            auth_service.register(RegisterRequest(email=f"user{i}@example.com", password=PASSWORD))
            for i in range(5)
        ))
        assert sorted(r.user.role for r in results) == ["admin", "user", "user", "user", "user"]

    @pytest.mark.asyncio
    async def test_account_created_unverified_with_token(self, mailer):
        """Registration should store a 64-char hex token valid for 24 hours."""
        result = await auth_service.register(
            RegisterRequest(email="alice@example.com", password=PASSWORD, first_name="Alice")
        )
        stored = await account_repo.get_account_by_id(result.user.id)

        assert stored["email_verified"] is False
        token = stored["email_verification_token"]
        assert len(token) == 64
        int(token, 16)
        ttl = stored["email_verification_token_expiry"] - datetime.now(timezone.utc)
        assert timedelta(hours=23, minutes=59) < ttl <= timedelta(hours=24)

        to, name, link = mailer.verification.call_args.args
        assert to == "alice@example.com"
        assert name == "Alice"
        assert link == f"http://localhost:8081/verify-email?token={token}"

    @pytest.mark.asyncio
    async def test_result_has_no_secrets(self):
        result = await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))
        dumped = result.model_dump()
        assert "password_hash" not in dumped["user"]
        assert "email_verification_token" not in dumped["user"]
        assert result.message

    @pytest.mark.asyncio
    async def test_duplicate_email(self):
        await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))
        with pytest.raises(DuplicateAccountError):
            await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))

    @pytest.mark.asyncio
    async def test_store_constraint_wins_race(self):
        """When the pre-check misses a concurrent insert, the store constraint rejects it."""
        await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))
        with patch.object(account_repo, "get_account_by_email", AsyncMock(return_value=None)):
            with pytest.raises(DuplicateAccountError):
                await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))

    @pytest.mark.asyncio
    async def test_short_password_rejected(self):
        with pytest.raises(ValidationError):
            await auth_service.register(RegisterRequest.model_construct(email="a@example.com", password="short"))

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_registration(self, mailer):
        mailer.verification.side_effect = RuntimeError("smtp down")
        result = await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))
        assert result.user.email == "a@example.com"

    @pytest.mark.asyncio
    async def test_registration_is_audited(self):
        await auth_service.register(RegisterRequest(email="a@example.com", password=PASSWORD))
        assert [r["action"] for r in audit_records()] == ["account.register"]


class TestValidateUser:

    @pytest.mark.asyncio
    async def test_unknown_email_and_wrong_password_are_indistinguishable(self, make_account):
        await make_account()
        with pytest.raises(InvalidCredentialsError) as unknown:
            await auth_service.validate_user("nobody@example.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError) as wrong:
            await auth_service.validate_user("alice@example.com", "wrong-password")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code

    @pytest.mark.asyncio
    async def test_suspended_account(self, make_account):
        account = await make_account()
        await account_repo.update_account(account["id"], status="suspended")
        with pytest.raises(AccountSuspendedError):
            await auth_service.validate_user("alice@example.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_unverified_account_has_stable_code(self, make_account):
        await make_account(verified=False)
        with pytest.raises(EmailNotVerifiedError) as exc_info:
            await auth_service.validate_user("alice@example.com", PASSWORD)
        assert exc_info.value.code == "EMAIL_NOT_VERIFIED"
        assert exc_info.value.details["error"] == "EMAIL_NOT_VERIFIED"

    @pytest.mark.asyncio
    async def test_secrets_stripped(self, make_account):
        await make_account()
        identity = await auth_service.validate_user("alice@example.com", PASSWORD)
        assert "password_hash" not in identity
        assert "two_factor_secret" not in identity
        assert identity["email"] == "alice@example.com"


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_issues_token_pair_and_records_login(self, make_account):
        account = await make_account()
        identity = await auth_service.validate_user("alice@example.com", PASSWORD)

        result = await auth_service.login(identity, client_ip="203.0.113.7")

        assert isinstance(result, LoginResult)
        assert result.token_type == "bearer"
        assert token_service.decode_access_token(result.access_token)["sub"] == str(account["id"])
        assert token_service.decode_refresh_token(result.refresh_token)["sub"] == str(account["id"])
        assert result.model_dump(by_alias=True)["user"]["twoFactorEnabled"] is False

        stored = await account_repo.get_account_by_id(account["id"])
        assert stored["last_login_ip"] == "203.0.113.7"
        assert stored["last_login_at"] is not None

    @pytest.mark.asyncio
    async def test_last_login_failure_does_not_block_login(self, make_account):
        await make_account()
        identity = await auth_service.validate_user("alice@example.com", PASSWORD)
        with patch.object(account_repo, "update_account", AsyncMock(side_effect=RuntimeError("db"))):
            result = await auth_service.login(identity, client_ip="203.0.113.7")
        assert isinstance(result, LoginResult)

    @pytest.mark.asyncio
    async def test_two_factor_challenge_then_success(self, make_account):
        """Without a code the login is a challenge; a current TOTP code completes it."""
        account = await make_account()
        secret = pyotp.random_base32()
        await account_repo.update_account(
            account["id"], two_factor_secret=secret, two_factor_enabled=True,
        )
        identity = await auth_service.validate_user("alice@example.com", PASSWORD)

        challenge = await auth_service.login(identity)
        assert isinstance(challenge, TwoFactorChallenge)
        assert challenge.model_dump(by_alias=True) == {
            "requires2FA": True,
            "message": "2FA code required",
        }

        result = await auth_service.login(identity, pyotp.TOTP(secret).now())
        assert isinstance(result, LoginResult)
        assert result.user.two_factor_enabled is True

    @pytest.mark.asyncio
    async def test_wrong_two_factor_code(self, make_account):
        account = await make_account()
        await account_repo.update_account(
            account["id"], two_factor_secret=pyotp.random_base32(), two_factor_enabled=True,
        )
        identity = await auth_service.validate_user("alice@example.com", PASSWORD)
        with pytest.raises(Invalid2FACodeError):
            await auth_service.login(identity, "000000")


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_issues_access_token_only(self, make_account):
        account = await make_account()
        refresh = token_service.create_refresh_token(account)
        result = await auth_service.refresh_access_token(refresh)
        assert token_service.decode_access_token(result.access_token)["sub"] == str(account["id"])
        assert not hasattr(result, "refresh_token")

    @pytest.mark.asyncio
    async def test_all_token_failures_collapse(self, make_account):
        """Expired, garbage and wrong-type tokens should produce one error."""
        account = await make_account()
        candidates = [
            "garbage",
            token_service.create_refresh_token(account, expires_delta=timedelta(seconds=-5)),
            token_service.create_access_token(account),
        ]
        for candidate in candidates:
            with pytest.raises(InvalidRefreshTokenError) as exc_info:
                await auth_service.refresh_access_token(candidate)
            assert exc_info.value.message == "Invalid refresh token"

    @pytest.mark.asyncio
    async def test_suspended_account_cannot_refresh(self, make_account):
        account = await make_account()
        refresh = token_service.create_refresh_token(account)
        await account_repo.update_account(account["id"], status="banned")
        with pytest.raises(InvalidRefreshTokenError):
            await auth_service.refresh_access_token(refresh)

    @pytest.mark.asyncio
    async def test_unverified_account_cannot_refresh(self, make_account):
        account = await make_account(verified=False)
        with pytest.raises(EmailNotVerifiedError):
            await auth_service.refresh_access_token(token_service.create_refresh_token(account))


class TestEmailVerification:

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, make_account, mailer):
        account = await make_account(verified=False)
        token = _verification_token(mailer)

        await auth_service.verify_email(token)
        stored = await account_repo.get_account_by_id(account["id"])
        assert stored["email_verified"] is True
        assert stored["email_verified_at"] is not None
        assert stored["email_verification_token"] is None
        assert stored["email_verification_token_expiry"] is None

        with pytest.raises(InvalidTokenError):
            await auth_service.verify_email(token)

    @pytest.mark.asyncio
    async def test_expired_token(self, make_account, mailer):
        account = await make_account(verified=False)
        await account_repo.update_account(
            account["id"],
            email_verification_token_expiry=datetime.now(timezone.utc) - timedelta(seconds=1),
        )
        with pytest.raises(TokenExpiredError):
            await auth_service.verify_email(_verification_token(mailer))

    @pytest.mark.asyncio
    async def test_already_verified(self, make_account):
        account = await make_account()
        await account_repo.update_account(account["id"], email_verification_token="a" * 64)
        with pytest.raises(AlreadyVerifiedError):
            await auth_service.verify_email("a" * 64)

    @pytest.mark.asyncio
    async def test_resend_by_id_grants_fresh_window(self, make_account, mailer):
        account = await make_account(verified=False)
        old_token = _verification_token(mailer)
        await account_repo.update_account(
            account["id"],
            email_verification_token_expiry=datetime.now(timezone.utc) + timedelta(minutes=1),
        )

        await auth_service.resend_verification(account["id"])

        stored = await account_repo.get_account_by_id(account["id"])
        assert stored["email_verification_token"] != old_token
        remaining = stored["email_verification_token_expiry"] - datetime.now(timezone.utc)
        assert remaining > timedelta(hours=23)
        with pytest.raises(InvalidTokenError):
            await auth_service.verify_email(old_token)
        await auth_service.verify_email(_verification_token(mailer))

    @pytest.mark.asyncio
    async def test_resend_by_id_errors(self, make_account):
        with pytest.raises(NotFoundError):
            await auth_service.resend_verification(uuid4())
        account = await make_account()
        with pytest.raises(AlreadyVerifiedError):
            await auth_service.resend_verification(account["id"])

    @pytest.mark.asyncio
    async def test_resend_by_email_is_generic(self, make_account, mailer):
        await make_account("verified@example.com")
        await make_account("pending@example.com", verified=False)
        mailer.verification.reset_mock()

        bodies = [
            (await auth_service.resend_verification_by_email(email)).model_dump()
            for email in ("nobody@example.com", "verified@example.com", "pending@example.com")
        ]

        assert bodies[0] == bodies[1] == bodies[2]
        assert mailer.verification.await_count == 1
        assert mailer.verification.call_args.args[0] == "pending@example.com"


class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_forgot_password_bodies_identical(self, make_account, mailer):
        await make_account("admin@example.com")
        await make_account("verified@example.com")
        await make_account("unverified@example.com", verified=False)
        await make_account("operator@example.com", role="operator")

        bodies = [
            (await auth_service.forgot_password(email)).model_dump_json()
            for email in (
                "nobody@example.com",
                "unverified@example.com",
                "verified@example.com",
                "operator@example.com",
            )
        ]

        assert len(set(bodies)) == 1
        recipients = [c.args[0] for c in mailer.password_reset.call_args_list]
        assert recipients == ["unverified@example.com", "verified@example.com"]

    @pytest.mark.asyncio
    async def test_operator_gets_no_reset_token(self, make_account):
        operator = await make_account("operator@example.com", role="operator")
        await auth_service.forgot_password("operator@example.com")
        stored = await account_repo.get_account_by_id(operator["id"])
        assert stored["password_reset_token"] is None

    @pytest.mark.asyncio
    async def test_forgot_password_email_failure_is_absorbed(self, make_account, mailer):
        await make_account()
        mailer.password_reset.return_value = False
        body = await auth_service.forgot_password("alice@example.com")
        assert body.message == auth_service.FORGOT_GENERIC_MESSAGE

    async def _issue_reset(self, make_account, mailer) -> tuple[dict, str]:
        account = await make_account()
        await auth_service.forgot_password("alice@example.com")
        return account, token_from_link(mailer.password_reset.call_args.args[2])

    @pytest.mark.asyncio
    async def test_reset_link_and_expiry(self, make_account, mailer):
        account, token = await self._issue_reset(make_account, mailer)
        link = mailer.password_reset.call_args.args[2]
        assert link == f"http://localhost:8081/reset-password?token={token}"
        stored = await account_repo.get_account_by_id(account["id"])
        ttl = stored["password_reset_expires"] - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < ttl <= timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_reset_just_before_expiry_succeeds(self, make_account, mailer):
        account, token = await self._issue_reset(make_account, mailer)
        await account_repo.update_account(
            account["id"],
            password_reset_expires=datetime.now(timezone.utc) + timedelta(seconds=1),
        )

        await auth_service.reset_password(token, "N3wPassword!")

        stored = await account_repo.get_account_by_id(account["id"])
        assert stored["password_reset_token"] is None
        assert stored["password_reset_expires"] is None
        await auth_service.validate_user("alice@example.com", "N3wPassword!")
        with pytest.raises(InvalidCredentialsError):
            await auth_service.validate_user("alice@example.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_just_after_expiry_fails(self, make_account, mailer):
        account, token = await self._issue_reset(make_account, mailer)
        await account_repo.update_account(
            account["id"],
            password_reset_expires=datetime.now(timezone.utc) - timedelta(seconds=1),
        )
        with pytest.raises(TokenExpiredError):
            await auth_service.reset_password(token, "N3wPassword!")

    @pytest.mark.asyncio
    async def test_reset_token_single_use(self, make_account, mailer):
        _, token = await self._issue_reset(make_account, mailer)
        await auth_service.reset_password(token, "N3wPassword!")
        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.reset_password(token, "An0therPass!")

    @pytest.mark.asyncio
    async def test_unknown_reset_token(self):
        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.reset_password("f" * 64, "N3wPassword!")

    @pytest.mark.asyncio
    async def test_new_reset_token_replaces_previous(self, make_account, mailer):
        _, first = await self._issue_reset(make_account, mailer)
        await auth_service.forgot_password("alice@example.com")
        second = token_from_link(mailer.password_reset.call_args.args[2])
        assert first != second
        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.reset_password(first, "N3wPassword!")


class TestAliceScenario:

    @pytest.mark.asyncio
    async def test_register_verify_login(self, mailer):
        """End to end: register, blocked login, verify once, login."""
        result = await auth_service.register(
            RegisterRequest(email="alice@example.com", password="Passw0rd!")
        )
        assert result.user.role == "admin"
        assert result.user.email_verified is False

        with pytest.raises(EmailNotVerifiedError):
            await auth_service.validate_user("alice@example.com", "Passw0rd!")

        token = _verification_token(mailer)
        await auth_service.verify_email(token)
        with pytest.raises(InvalidTokenError):
            await auth_service.verify_email(token)

        identity = await auth_service.validate_user("alice@example.com", "Passw0rd!")
        login = await auth_service.login(identity, client_ip="127.0.0.1")
        assert isinstance(login, LoginResult)
        assert login.access_token and login.refresh_token
        assert login.model_dump(by_alias=True)["user"] == {
            "id": result.user.id,
            "email": "alice@example.com",
            "role": "admin",
            "twoFactorEnabled": False,
        }
