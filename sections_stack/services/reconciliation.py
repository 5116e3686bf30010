"""
Reconciliation - Apply billing events to the Entitlement Store.

ReconciliationEngine makes a single canonical event true in the store.
BillingEventProcessor is the boundary every billing route goes through: it
normalizes, reconciles, retries transient store failures, and turns the
non-fatal errors into acknowledged outcomes.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from sections_stack.exceptions import (
    AmbiguousSectionNameError,
    InactiveChargeError,
    MalformedReferenceError,
    SectionNotFoundError,
    StoreUnavailableError,
    UnknownShopError,
)
from sections_stack.models.domain import (
    BillingEvent,
    BillingSignal,
    EntitlementData,
    ReconciliationResult,
)
from sections_stack.observability.logging import get_logger, log_context
from sections_stack.observability.metrics import metrics
from sections_stack.observability.tracing import trace_operation
from sections_stack.services.billing_events import BillingEventNormalizer
from sections_stack.services.entitlements import EntitlementStore
from sections_stack.services.shops import ShopDirectory

logger = get_logger(__name__)


class ReconciliationEngine:
    """
    Ensures one up-to-date entitlement per (shop, section).

    Exactly one store write per successful call: create when no entitlement
    exists, otherwise overwrite charge id and status.
    """

    def __init__(self, shops: ShopDirectory, store: EntitlementStore) -> None:
        self.shops = shops
        self.store = store

    async def reconcile(self, event: BillingEvent) -> ReconciliationResult:
        """
        Apply one canonical billing event.

        Raises:
            UnknownShopError: no installed shop for event.shop_domain (no write)
            StoreUnavailableError: transient persistence failure
        """
        shop = await self.shops.find_shop_by_domain(event.shop_domain)
        if shop is None:
            raise UnknownShopError(event.shop_domain)

        existing = await self.store.find_entitlement(shop.shop_id, event.section_id)

        if existing is None:
            entitlement = await self.store.create_entitlement(
                shop.shop_id, event.section_id, event.charge_id, event.status
            )
            created = True
        else:
            entitlement = await self.store.update_entitlement_charge(
                existing.entitlement_id, event.charge_id, event.status
            )
            created = False

        metrics.record_entitlement_write(created)
        logger.info(
            "entitlement_created" if created else "entitlement_updated",
            shop_domain=event.shop_domain,
            section_id=event.section_id,
            charge_id=event.charge_id,
            status=event.status.value,
            entitlement_id=str(entitlement.entitlement_id),
        )
        return ReconciliationResult(entitlement=entitlement, created=created)


class ProcessingOutcome(str, Enum):
    """How a billing signal was handled."""

    RECONCILED = "reconciled"
    UNKNOWN_SHOP = "unknown_shop"
    MALFORMED_REFERENCE = "malformed_reference"
    SECTION_NOT_FOUND = "section_not_found"
    AMBIGUOUS_SECTION = "ambiguous_section"
    INACTIVE_CHARGE = "inactive_charge"


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of processing one billing signal."""

    outcome: ProcessingOutcome
    event: BillingEvent | None = None
    entitlement: EntitlementData | None = None
    created: bool = False

    @property
    def reconciled(self) -> bool:
        return self.outcome == ProcessingOutcome.RECONCILED


class BillingEventProcessor:
    """
    Event-handling boundary for billing signals.

    Only StoreUnavailableError is retried (linear backoff). Non-fatal errors
    are logged, counted and returned as outcomes; a store that stays
    unavailable propagates to the caller.
    """

    def __init__(
        self,
        normalizer: BillingEventNormalizer,
        engine: ReconciliationEngine,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError(f"retry_attempts must be at least 1: {retry_attempts}")
        self.normalizer = normalizer
        self.engine = engine
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    async def process(self, signal: BillingSignal) -> ProcessingResult:
        """Normalize and reconcile one signal."""
        variant = signal.variant
        start_time = time.perf_counter()

        with log_context(shop_domain=signal.shop_domain, variant=variant), trace_operation(
            "billing_event.process", shop_domain=signal.shop_domain, variant=variant
        ) as span:
            try:
                result = await self._process_with_retry(signal)
            except UnknownShopError as e:
                logger.warning("unknown_shop_skipped", error=str(e))
                result = ProcessingResult(outcome=ProcessingOutcome.UNKNOWN_SHOP)
            except MalformedReferenceError as e:
                logger.error("malformed_section_reference", raw_reference=e.raw_reference)
                result = ProcessingResult(outcome=ProcessingOutcome.MALFORMED_REFERENCE)
            except SectionNotFoundError as e:
                logger.error("section_not_found", reference=e.reference)
                result = ProcessingResult(outcome=ProcessingOutcome.SECTION_NOT_FOUND)
            except AmbiguousSectionNameError as e:
                logger.error(
                    "ambiguous_section_name",
                    display_name=e.display_name,
                    match_count=e.match_count,
                )
                result = ProcessingResult(outcome=ProcessingOutcome.AMBIGUOUS_SECTION)
            except InactiveChargeError as e:
                logger.info("inactive_charge_ignored", charge_id=e.charge_id, charge_status=e.status)
                result = ProcessingResult(outcome=ProcessingOutcome.INACTIVE_CHARGE)
            except StoreUnavailableError as e:
                metrics.record_billing_event(
                    variant, "store_unavailable", time.perf_counter() - start_time
                )
                metrics.record_error("StoreUnavailableError", e.operation)
                logger.error(
                    "billing_event_store_unavailable",
                    operation=e.operation,
                    attempts=self.retry_attempts,
                    error=e.message,
                )
                raise

            span.set_attribute("outcome", result.outcome.value)

        metrics.record_billing_event(variant, result.outcome.value, time.perf_counter() - start_time)
        if result.reconciled:
            logger.info(
                "billing_event_reconciled",
                shop_domain=signal.shop_domain,
                variant=variant,
                created=result.created,
            )
        return result

    async def _process_with_retry(self, signal: BillingSignal) -> ProcessingResult:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                event = await self.normalizer.normalize(signal)
                reconciliation = await self.engine.reconcile(event)
            except StoreUnavailableError as e:
                if attempt >= self.retry_attempts:
                    raise
                metrics.record_store_retry(e.operation)
                logger.warning(
                    "store_unavailable_retrying",
                    operation=e.operation,
                    attempt=attempt,
                    max_attempts=self.retry_attempts,
                )
                await self._sleep(self.retry_backoff_seconds * attempt)
                continue

            return ProcessingResult(
                outcome=ProcessingOutcome.RECONCILED,
                event=event,
                entitlement=reconciliation.entitlement,
                created=reconciliation.created,
            )

        raise AssertionError("unreachable")
