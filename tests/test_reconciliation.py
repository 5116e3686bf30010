"""
Tests for the Reconciliation Engine and the Billing Event Processor.
"""

import asyncio
from uuid import UUID, uuid4

import pytest

from sections_stack.exceptions import StoreUnavailableError, UnknownShopError
from sections_stack.models.api import EntitlementStatus
from sections_stack.models.domain import (
    FREE_CHARGE_ID,
    BillingEvent,
    EmbeddedIdWebhookSignal,
    FreeGrantSignal,
    NamedWebhookSignal,
    RedirectCallbackSignal,
    ShopAccount,
)
from sections_stack.services.billing_events import BillingEventNormalizer, charge_name_for
from sections_stack.services.reconciliation import (
    BillingEventProcessor,
    ProcessingOutcome,
    ProcessingResult,
    ReconciliationEngine,
)
from tests.fakes import (
    CHARGE_GID,
    FREE_SECTION_ID,
    OTHER_SHOP_DOMAIN,
    PAID_SECTION_ID,
    SHOP_DOMAIN,
    InMemoryCatalog,
    InMemoryEntitlementStore,
    InMemoryShopDirectory,
    make_section_data,
    make_shop_account,
)


def _event(
    section_id: str = PAID_SECTION_ID,
    charge_id: str = CHARGE_GID,
    status: EntitlementStatus = EntitlementStatus.ACTIVE,
    shop_domain: str = SHOP_DOMAIN,
) -> BillingEvent:
    return BillingEvent(
        shop_domain=shop_domain, section_id=section_id, charge_id=charge_id, status=status
    )


# ============================================================================
# Reconciliation Engine
# ============================================================================


class TestReconcile:
    """Tests for ReconciliationEngine.reconcile."""

    async def test_first_event_creates(
        self, engine: ReconciliationEngine, store: InMemoryEntitlementStore, shop_account: ShopAccount
    ):
        result = await engine.reconcile(_event())

        assert result.created is True
        assert result.entitlement.shop_id == shop_account.shop_id
        assert result.entitlement.charge_id == CHARGE_GID
        assert result.entitlement.status == EntitlementStatus.ACTIVE
        assert store.create_calls == 1
        assert store.update_calls == 0

    async def test_second_event_updates_in_place(
        self, engine: ReconciliationEngine, store: InMemoryEntitlementStore
    ):
        first = await engine.reconcile(_event(status=EntitlementStatus.PENDING))
        second = await engine.reconcile(
            _event(charge_id="gid://shopify/AppPurchaseOneTime/2002", status=EntitlementStatus.ACTIVE)
        )

        assert second.created is False
        assert second.entitlement.entitlement_id == first.entitlement.entitlement_id
        assert second.entitlement.charge_id == "gid://shopify/AppPurchaseOneTime/2002"
        assert second.entitlement.status == EntitlementStatus.ACTIVE
        assert len(store.rows) == 1

    async def test_replay_is_idempotent(
        self, engine: ReconciliationEngine, store: InMemoryEntitlementStore
    ):
        first = await engine.reconcile(_event())
        replay = await engine.reconcile(_event())

        assert replay.created is False
        assert replay.entitlement == first.entitlement
        assert len(store.rows) == 1

    async def test_later_event_overwrites_status_downwards(
        self, engine: ReconciliationEngine
    ):
        await engine.reconcile(_event(status=EntitlementStatus.ACTIVE))
        result = await engine.reconcile(_event(status=EntitlementStatus.PENDING))

        assert result.entitlement.status == EntitlementStatus.PENDING

    async def test_exactly_one_write_per_call(
        self, engine: ReconciliationEngine, store: InMemoryEntitlementStore
    ):
        for _ in range(3):
            await engine.reconcile(_event())

        assert store.write_calls == 3

    async def test_unknown_shop_raises_without_write(
        self, engine: ReconciliationEngine, store: InMemoryEntitlementStore
    ):
        with pytest.raises(UnknownShopError) as exc_info:
            await engine.reconcile(_event(shop_domain=OTHER_SHOP_DOMAIN))

        assert exc_info.value.shop_domain == OTHER_SHOP_DOMAIN
        assert store.write_calls == 0
        assert store.rows == {}

    async def test_store_failure_propagates(self, directory: InMemoryShopDirectory):
        engine = ReconciliationEngine(directory, InMemoryEntitlementStore(fail_next=1))

        with pytest.raises(StoreUnavailableError):
            await engine.reconcile(_event())


class _InterleavingStore(InMemoryEntitlementStore):
    """Yields to the event loop after each lookup so concurrent reconciles interleave."""

    async def find_entitlement(self, shop_id: UUID, section_id: str):
        found = await super().find_entitlement(shop_id, section_id)
        await asyncio.sleep(0)
        return found


class TestConcurrentReconcile:
    """Two deliveries of the same purchase racing through reconcile."""

    async def test_duplicate_delivery_leaves_one_row(self, directory: InMemoryShopDirectory):
        store = _InterleavingStore()
        engine = ReconciliationEngine(directory, store)
        event = _event()

        results = await asyncio.gather(engine.reconcile(event), engine.reconcile(event))

        assert len(store.rows) == 1
        assert store.create_calls == 2
        assert results[0].entitlement == results[1].entitlement

    async def test_racing_statuses_last_write_wins(self, directory: InMemoryShopDirectory):
        store = _InterleavingStore()
        engine = ReconciliationEngine(directory, store)

        await asyncio.gather(
            engine.reconcile(_event(status=EntitlementStatus.PENDING)),
            engine.reconcile(_event(status=EntitlementStatus.ACTIVE)),
        )

        (entitlement,) = store.rows.values()
        assert entitlement.status == EntitlementStatus.ACTIVE


# ============================================================================
# Billing Event Processor
# ============================================================================


class TestProcessorOutcomes:
    """Each non-fatal error becomes an acknowledged outcome."""

    async def test_reconciled(self, processor: BillingEventProcessor, store: InMemoryEntitlementStore):
        result = await processor.process(
            RedirectCallbackSignal(SHOP_DOMAIN, PAID_SECTION_ID, CHARGE_GID, "ACTIVE")
        )

        assert result.outcome == ProcessingOutcome.RECONCILED
        assert result.reconciled
        assert result.created
        assert result.entitlement is not None
        assert result.event is not None and result.event.section_id == PAID_SECTION_ID
        assert len(store.rows) == 1

    async def test_unknown_shop(self, processor: BillingEventProcessor, store: InMemoryEntitlementStore):
        result = await processor.process(
            RedirectCallbackSignal(OTHER_SHOP_DOMAIN, PAID_SECTION_ID, CHARGE_GID, "ACTIVE")
        )

        assert result.outcome == ProcessingOutcome.UNKNOWN_SHOP
        assert not result.reconciled
        assert store.rows == {}

    async def test_malformed_reference(self, processor: BillingEventProcessor):
        result = await processor.process(
            EmbeddedIdWebhookSignal(SHOP_DOMAIN, "sectionId=zzz", CHARGE_GID, "ACTIVE")
        )

        assert result.outcome == ProcessingOutcome.MALFORMED_REFERENCE

    async def test_section_not_found(self, processor: BillingEventProcessor):
        result = await processor.process(
            NamedWebhookSignal(SHOP_DOMAIN, "Purchase section: Missing", CHARGE_GID, "ACTIVE")
        )

        assert result.outcome == ProcessingOutcome.SECTION_NOT_FOUND

    async def test_ambiguous_section(self, directory: InMemoryShopDirectory):
        catalog = InMemoryCatalog(
            [
                make_section_data(section_id="1" * 24, name="Twin", identifier="twin-1"),
                make_section_data(section_id="2" * 24, name="Twin", identifier="twin-2"),
            ]
        )
        store = InMemoryEntitlementStore()
        processor = BillingEventProcessor(
            BillingEventNormalizer(catalog), ReconciliationEngine(directory, store)
        )

        result = await processor.process(
            NamedWebhookSignal(SHOP_DOMAIN, "Purchase section: Twin", CHARGE_GID, "ACTIVE")
        )

        assert result.outcome == ProcessingOutcome.AMBIGUOUS_SECTION
        assert store.rows == {}

    async def test_inactive_charge(
        self, processor: BillingEventProcessor, store: InMemoryEntitlementStore
    ):
        result = await processor.process(
            RedirectCallbackSignal(SHOP_DOMAIN, PAID_SECTION_ID, CHARGE_GID, "DECLINED")
        )

        assert result.outcome == ProcessingOutcome.INACTIVE_CHARGE
        assert store.rows == {}

    async def test_free_grant(self, processor: BillingEventProcessor, shop_account: ShopAccount):
        result = await processor.process(FreeGrantSignal(SHOP_DOMAIN, FREE_SECTION_ID))

        assert result.reconciled
        assert result.entitlement is not None
        assert result.entitlement.charge_id == FREE_CHARGE_ID
        assert result.entitlement.status == EntitlementStatus.ACTIVE
        assert result.entitlement.shop_id == shop_account.shop_id


class TestProcessorRetry:
    """Only StoreUnavailableError is retried."""

    async def test_recovers_after_transient_failures(
        self,
        normalizer: BillingEventNormalizer,
        directory: InMemoryShopDirectory,
        sleep_calls: list[float],
    ):
        store = InMemoryEntitlementStore(fail_next=2)

        async def fake_sleep(seconds: float) -> None:
            sleep_calls.append(seconds)

        processor = BillingEventProcessor(
            normalizer,
            ReconciliationEngine(directory, store),
            retry_attempts=3,
            retry_backoff_seconds=0.5,
            sleep=fake_sleep,
        )

        result = await processor.process(
            RedirectCallbackSignal(SHOP_DOMAIN, PAID_SECTION_ID, CHARGE_GID, "ACTIVE")
        )

        assert result.reconciled
        assert sleep_calls == [0.5, 1.0]
        assert len(store.rows) == 1

    async def test_gives_up_after_retry_attempts(
        self,
        normalizer: BillingEventNormalizer,
        directory: InMemoryShopDirectory,
        sleep_calls: list[float],
    ):
        store = InMemoryEntitlementStore(fail_next=10)

        async def fake_sleep(seconds: float) -> None:
            sleep_calls.append(seconds)

        processor = BillingEventProcessor(
            normalizer,
            ReconciliationEngine(directory, store),
            retry_attempts=3,
            retry_backoff_seconds=0.5,
            sleep=fake_sleep,
        )

        with pytest.raises(StoreUnavailableError):
            await processor.process(
                RedirectCallbackSignal(SHOP_DOMAIN, PAID_SECTION_ID, CHARGE_GID, "ACTIVE")
            )

        assert store.fail_next == 7
        assert sleep_calls == [0.5, 1.0]
        assert store.rows == {}

    async def test_non_fatal_errors_are_not_retried(
        self, processor: BillingEventProcessor, sleep_calls: list[float]
    ):
        await processor.process(
            RedirectCallbackSignal(OTHER_SHOP_DOMAIN, PAID_SECTION_ID, CHARGE_GID, "ACTIVE")
        )

        assert sleep_calls == []

    def test_rejects_zero_attempts(
        self, normalizer: BillingEventNormalizer, engine: ReconciliationEngine
    ):
        with pytest.raises(ValueError):
            BillingEventProcessor(normalizer, engine, retry_attempts=0)


class TestProcessingResult:
    """Tests for ProcessingResult."""

    def test_reconciled_property(self):
        assert ProcessingResult(outcome=ProcessingOutcome.RECONCILED).reconciled
        assert not ProcessingResult(outcome=ProcessingOutcome.INACTIVE_CHARGE).reconciled

    def test_outcome_values_are_strings(self):
        assert ProcessingOutcome.UNKNOWN_SHOP.value == "unknown_shop"
        assert {o.value for o in ProcessingOutcome} == {
            "reconciled",
            "unknown_shop",
            "malformed_reference",
            "section_not_found",
            "ambiguous_section",
            "inactive_charge",
        }


class TestEmbeddedNameVariantsAgree:
    """Both webhook variants for the same purchase converge on one entitlement."""

    async def test_embedded_then_named(
        self, processor: BillingEventProcessor, store: InMemoryEntitlementStore
    ):
        embedded = await processor.process(
            EmbeddedIdWebhookSignal(
                SHOP_DOMAIN, charge_name_for("Hero Banner", PAID_SECTION_ID), CHARGE_GID, "PENDING"
            )
        )
        named = await processor.process(
            NamedWebhookSignal(SHOP_DOMAIN, "Purchase section: Hero Banner", CHARGE_GID, "ACTIVE")
        )

        assert embedded.created
        assert not named.created
        assert len(store.rows) == 1
        (entitlement,) = store.rows.values()
        assert entitlement.status == EntitlementStatus.ACTIVE

    async def test_other_shop_gets_own_entitlement(self, catalog: InMemoryCatalog):
        shops = [make_shop_account(), make_shop_account(shop_domain=OTHER_SHOP_DOMAIN, shop_id=uuid4())]
        store = InMemoryEntitlementStore()
        processor = BillingEventProcessor(
            BillingEventNormalizer(catalog),
            ReconciliationEngine(InMemoryShopDirectory(shops), store),
        )

        for shop in shops:
            await processor.process(FreeGrantSignal(shop.shop_domain, FREE_SECTION_ID))

        assert len(store.rows) == 2
