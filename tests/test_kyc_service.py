"""Tests for the KYC tier state machine and the admin review workflow."""

from uuid import uuid4

import pytest
import pytest_asyncio

from exchange_accounts.exceptions import (
    AlreadySubmittedError,
    ConflictError,
    LevelAlreadyApprovedError,
    LevelNotApprovedError,
    NotFoundError,
)
from exchange_accounts.models.enums import KycStatus
from exchange_accounts.models.kyc import KycUpdate, Level1Data, Level2Data, Level3Data
from exchange_accounts.services import kyc_service

LIMITS = {"level1": 100.0, "level2": 1000.0, "level3": 10000.0}

LEVEL1 = Level1Data(first_name="Alice", last_name="Smith", date_of_birth="1990-01-31", nationality="DE")
LEVEL2 = KycUpdate(level2_data=Level2Data(
    national_card_front="https://files.example.com/front.jpg",
    national_card_back="https://files.example.com/back.jpg",
    selfie="https://files.example.com/selfie.jpg",
))
LEVEL3 = KycUpdate(level3_data=Level3Data(
    additional_documents=["https://files.example.com/utility-bill.pdf"],
    notes="Proof of address",
))


@pytest_asyncio.fixture
async def users(make_account):
    admin = await make_account("admin@example.com")
    user = await make_account("bob@example.com", first_name="Bob")
    return admin, user


def _assert_limit(record) -> None:
    assert record.daily_withdraw_limit == LIMITS[record.level.value]


class TestSubmission:

    @pytest.mark.asyncio
    async def test_level1_creates_pending_record(self, users):
        _, user = users
        record = await kyc_service.submit_level1(user["id"], LEVEL1)
        assert record.level == "level1"
        assert record.status == "pending"
        assert record.level1_data.first_name == "Alice"
        _assert_limit(record)

    @pytest.mark.asyncio
    async def test_second_level1_submit_rejected(self, users):
        _, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        with pytest.raises(AlreadySubmittedError):
            await kyc_service.submit_level1(user["id"], LEVEL1)

    @pytest.mark.asyncio
    async def test_level2_requires_level1_approved(self, users):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        with pytest.raises(LevelNotApprovedError):
            await kyc_service.update(user["id"], LEVEL2)

        await kyc_service.approve(user["id"], admin["id"])
        record = await kyc_service.update(user["id"], LEVEL2)

        assert record.level == "level2"
        assert record.status == "pending"
        _assert_limit(record)

    @pytest.mark.asyncio
    async def test_level2_resubmit_after_approval_rejected(self, users):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        await kyc_service.approve(user["id"], admin["id"])
        await kyc_service.update(user["id"], LEVEL2)
        await kyc_service.approve(user["id"], admin["id"])

        with pytest.raises(LevelAlreadyApprovedError):
            await kyc_service.update(user["id"], LEVEL2)

    @pytest.mark.asyncio
    async def test_level3_requires_level2_approved(self, users):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        with pytest.raises(LevelNotApprovedError):
            await kyc_service.update(user["id"], LEVEL3)

        await kyc_service.approve(user["id"], admin["id"])
        await kyc_service.update(user["id"], LEVEL2)
        with pytest.raises(LevelNotApprovedError):
            await kyc_service.update(user["id"], LEVEL3)

        await kyc_service.approve(user["id"], admin["id"])
        record = await kyc_service.update(user["id"], LEVEL3)
        assert record.level == "level3"
        assert record.level3_data.notes == "Proof of address"
        _assert_limit(record)

        await kyc_service.approve(user["id"], admin["id"])
        with pytest.raises(LevelAlreadyApprovedError):
            await kyc_service.update(user["id"], LEVEL3)
        with pytest.raises(LevelAlreadyApprovedError):
            await kyc_service.update(user["id"], LEVEL2)

    @pytest.mark.asyncio
    async def test_rejected_level_can_be_resubmitted_without_downgrade(self, users):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        await kyc_service.approve(user["id"], admin["id"])
        await kyc_service.update(user["id"], LEVEL2)

        rejected = await kyc_service.reject(user["id"], admin["id"], "Blurry selfie")
        assert rejected.level == "level2"
        assert rejected.status == "rejected"
        _assert_limit(rejected)

        resubmitted = await kyc_service.update(user["id"], LEVEL2)
        assert resubmitted.level == "level2"
        assert resubmitted.status == "pending"

    @pytest.mark.asyncio
    async def test_level1_resubmit_only_before_approval(self, users):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        updated = await kyc_service.update(
            user["id"], KycUpdate(level1_data=Level1Data(first_name="Alicia")),
        )
        assert updated.level1_data.first_name == "Alicia"

        await kyc_service.approve(user["id"], admin["id"])
        with pytest.raises(LevelAlreadyApprovedError):
            await kyc_service.update(user["id"], KycUpdate(level1_data=LEVEL1))

    @pytest.mark.asyncio
    async def test_update_without_record(self, users):
        _, user = users
        with pytest.raises(NotFoundError):
            await kyc_service.update(user["id"], LEVEL2)


class TestUpdatePayload:

    def test_exactly_one_level_required(self):
        with pytest.raises(ValueError):
            KycUpdate()
        with pytest.raises(ValueError):
            KycUpdate(level1_data=LEVEL1, level2_data=Level2Data())


class TestReview:

    @pytest.mark.asyncio
    async def test_approve_stamps_reviewer_and_notifies(self, users, mailer):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)

        record = await kyc_service.approve(user["id"], admin["id"], "Looks good")

        assert record.status == "approved"
        assert record.reviewed_by == admin["id"]
        assert record.review_notes == "Looks good"
        assert record.reviewed_at is not None
        mailer.kyc_status.assert_awaited_once_with("bob@example.com", "approved", "level1", "Bob")

    @pytest.mark.asyncio
    async def test_notification_failure_is_absorbed(self, users, mailer):
        admin, user = users
        mailer.kyc_status.side_effect = RuntimeError("mail down")
        await kyc_service.submit_level1(user["id"], LEVEL1)
        record = await kyc_service.reject(user["id"], admin["id"], "Name mismatch")
        assert record.status == "rejected"

    @pytest.mark.asyncio
    async def test_only_pending_records_can_be_reviewed(self, users):
        admin, user = users
        await kyc_service.submit_level1(user["id"], LEVEL1)
        await kyc_service.approve(user["id"], admin["id"])
        with pytest.raises(ConflictError):
            await kyc_service.reject(user["id"], admin["id"], "Too late")

    @pytest.mark.asyncio
    async def test_review_unknown_record(self, users):
        admin, _ = users
        with pytest.raises(NotFoundError):
            await kyc_service.approve(uuid4(), admin["id"])

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, make_account, users):
        admin, user = users
        other = await make_account("carol@example.com")
        await kyc_service.submit_level1(user["id"], LEVEL1)
        await kyc_service.submit_level1(other["id"], LEVEL1)
        await kyc_service.approve(other["id"], admin["id"])

        pending = await kyc_service.list_records(status=KycStatus.PENDING)
        everything = await kyc_service.list_records()

        assert [r.user_id for r in pending] == [user["id"]]
        assert {r.user_id for r in everything} == {other["id"], user["id"]}


class TestLimits:

    @pytest.mark.parametrize("level,limit", sorted(LIMITS.items()))
    def test_limit_is_function_of_level(self, level, limit):
        assert kyc_service.daily_limit_for(level) == limit
