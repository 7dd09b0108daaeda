"""
Unit tests for SubscriptionRepository.

Tests database operations for subscriptions without mocking the database.
"""

import pytest
from datetime import timedelta

from packages.billing.exceptions import StaleVersionError
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.models.domain.subscription import (
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.enums import FailureClass, SubscriptionStatus
from tests.conftest import PERIOD_END, PERIOD_START


@pytest.mark.asyncio
class TestSubscriptionRepository:
    """Tests for SubscriptionRepository."""

    async def test_create_subscription(self, test_db, sample_plan):
        """Test creating a subscription."""
        repo = SubscriptionRepository(test_db)

        subscription = await repo.create(
            SubscriptionCreateModel(
                owner_id=7,
                plan_id=sample_plan.id,
                current_period_start=PERIOD_START,
                current_period_end=PERIOD_END,
            )
        )

        assert subscription.id is not None
        assert subscription.status == SubscriptionStatus.ACTIVE  # Default status
        assert subscription.version == 1
        assert subscription.failed_payment_count == 0

    async def test_get_by_id(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)

        subscription = await repo.get(sample_subscription.id)

        assert subscription is not None
        assert subscription.period_key == sample_subscription.period_key
        assert subscription.current_period_end == PERIOD_END

    async def test_compare_and_swap_bumps_version(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)

        updated = await repo.compare_and_swap(
            sample_subscription.id,
            sample_subscription.version,
            SubscriptionUpdateModel(
                status=SubscriptionStatus.PAST_DUE,
                failed_payment_count=1,
                last_failure_reason=FailureClass.INSUFFICIENT_FUNDS,
            ),
        )

        assert updated.version == sample_subscription.version + 1
        assert updated.status == SubscriptionStatus.PAST_DUE
        assert updated.last_failure_reason == FailureClass.INSUFFICIENT_FUNDS
        # Untouched fields keep their values
        assert updated.payment_method_id == "pm_primary"

    async def test_empty_update_claims_version(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)

        claimed = await repo.compare_and_swap(
            sample_subscription.id, sample_subscription.version, SubscriptionUpdateModel()
        )

        assert claimed.version == sample_subscription.version + 1
        assert claimed.status == sample_subscription.status

    async def test_stale_version_rejected(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)
        await repo.compare_and_swap(
            sample_subscription.id, sample_subscription.version, SubscriptionUpdateModel()
        )

        with pytest.raises(StaleVersionError) as exc_info:
            await repo.compare_and_swap(
                sample_subscription.id,
                sample_subscription.version,
                SubscriptionUpdateModel(status=SubscriptionStatus.CANCELLED),
            )

        assert exc_info.value.expected_version == sample_subscription.version
        current = await repo.get(sample_subscription.id)
        assert current.status == SubscriptionStatus.ACTIVE

    async def test_missing_subscription_is_stale(self, test_db):
        repo = SubscriptionRepository(test_db)

        with pytest.raises(StaleVersionError):
            await repo.compare_and_swap(999999, 1, SubscriptionUpdateModel())

    async def test_get_due(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)

        before = await repo.get_due(PERIOD_END - timedelta(seconds=1))
        at_end = await repo.get_due(PERIOD_END)

        assert before == []
        assert [s.id for s in at_end] == [sample_subscription.id]

    async def test_get_due_includes_cancelling(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)
        await repo.compare_and_swap(
            sample_subscription.id,
            sample_subscription.version,
            SubscriptionUpdateModel(
                status=SubscriptionStatus.CANCELLING, cancel_at_period_end=True
            ),
        )

        due = await repo.get_due(PERIOD_END)

        assert [s.status for s in due] == [SubscriptionStatus.CANCELLING]

    async def test_get_due_excludes_past_due(self, test_db, sample_subscription):
        repo = SubscriptionRepository(test_db)
        await repo.compare_and_swap(
            sample_subscription.id,
            sample_subscription.version,
            SubscriptionUpdateModel(status=SubscriptionStatus.PAST_DUE),
        )

        assert await repo.get_due(PERIOD_END) == []
        past_due = await repo.get_past_due()
        assert [s.id for s in past_due] == [sample_subscription.id]
