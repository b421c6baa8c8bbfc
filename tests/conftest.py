"""
Shared test fixtures.

The service runs against the in-memory store; NATS and email delivery are
disabled through the environment and email functions are replaced with
AsyncMocks so tests can read the links that would have been sent.
"""

import os

os.environ["APP_ENV"] = "test"
os.environ["NATS_URL"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RESEND_API_KEY"] = ""
os.environ["RECAPTCHA_SECRET_KEY"] = ""
os.environ["JWT_SECRET_KEY"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET_KEY"] = "test-refresh-secret"

from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock, patch  # noqa: E402
from urllib.parse import parse_qs, urlparse  # noqa: E402

import pytest  # noqa: E402

from exchange_accounts.adapters import email_client  # noqa: E402
from exchange_accounts.config import get_settings  # noqa: E402
from exchange_accounts.db.repositories import account_repo  # noqa: E402
from exchange_accounts.memory_store import activate_memory_store, reset_memory_store  # noqa: E402
from exchange_accounts.models.account import RegisterRequest  # noqa: E402
from exchange_accounts.services import auth_service  # noqa: E402
from exchange_accounts.services.rate_limiter import get_rate_limiter  # noqa: E402

PASSWORD = "Passw0rd!"


def token_from_link(link: str) -> str:
    """Extract the ``token`` query parameter from an emailed link."""
    return parse_qs(urlparse(link).query)["token"][0]


@pytest.fixture(autouse=True)
def memory_store():
    """Fresh in-memory store, settings and rate limiter for every test."""
    get_settings.cache_clear()
    activate_memory_store()
    reset_memory_store()
    get_rate_limiter().reset()
    yield
    reset_memory_store()
    get_rate_limiter().reset()


@pytest.fixture(autouse=True)
def mailer():
    """Replace outbound notifications with mocks that report success."""
    mocks = SimpleNamespace(
        verification=AsyncMock(return_value=True),
        password_reset=AsyncMock(return_value=True),
        two_factor_enabled=AsyncMock(return_value=True),
        kyc_status=AsyncMock(return_value=True),
    )
    with patch.object(email_client, "send_verification_email", mocks.verification), \
            patch.object(email_client, "send_password_reset_email", mocks.password_reset), \
            patch.object(email_client, "send_two_factor_enabled", mocks.two_factor_enabled), \
            patch.object(email_client, "send_kyc_status_update", mocks.kyc_status):
        yield mocks


@pytest.fixture
def make_account():
    """
    Factory registering an account through the service.

    Accounts are email-verified by default; ``role`` overrides the role
    assigned at registration.
    """
    async def _make(
        email: str = "alice@example.com",
        password: str = PASSWORD,
        *,
        verified: bool = True,
        role: str | None = None,
        **profile,
    ) -> dict:
        result = await auth_service.register(
            RegisterRequest(email=email, password=password, **profile)
        )
        fields = {}
        if verified:
            fields.update(
                email_verified=True,
                email_verification_token=None,
                email_verification_token_expiry=None,
            )
        if role:
            fields["role"] = role
        if fields:
            await account_repo.update_account(result.user.id, **fields)
        return await account_repo.get_account_by_id(result.user.id)

    return _make
