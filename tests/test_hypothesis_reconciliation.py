"""
Hypothesis Property-Based Tests for billing reconciliation.

Tests reconciliation invariants over arbitrary sequences of billing signals.
"""

from dataclasses import replace

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from sections_stack.exceptions import MalformedReferenceError
from sections_stack.models.api import EntitlementStatus
from sections_stack.models.domain import (
    FREE_CHARGE_ID,
    EmbeddedIdWebhookSignal,
    FreeGrantSignal,
    NamedWebhookSignal,
    RedirectCallbackSignal,
    is_section_id,
)
from sections_stack.services.billing_events import (
    BillingEventNormalizer,
    canonical_charge_id,
    charge_name_for,
    extract_section_id,
)
from sections_stack.services.reconciliation import (
    BillingEventProcessor,
    ProcessingOutcome,
    ReconciliationEngine,
)
from tests.fakes import (
    OTHER_SHOP_DOMAIN,
    SHOP_DOMAIN,
    InMemoryCatalog,
    InMemoryEntitlementStore,
    InMemoryShopDirectory,
    make_section_data,
    make_shop_account,
)

# ============================================================================
# Hypothesis Strategies
# ============================================================================

section_ids = st.text(alphabet="0123456789abcdef", min_size=24, max_size=24)
charge_numbers = st.integers(min_value=1, max_value=10**12)
granting_statuses = st.sampled_from(["ACTIVE", "PENDING", "active", "pending"])
non_granting_statuses = st.sampled_from(["DECLINED", "EXPIRED", "FROZEN", "CANCELLED"])
shop_domains = st.sampled_from([SHOP_DOMAIN, OTHER_SHOP_DOMAIN])

CATALOG_IDS = ["1" * 24, "2" * 24, "3" * 24]
CATALOG_NAMES = {"1" * 24: "Alpha", "2" * 24: "Beta", "3" * 24: "Gamma"}


def _build():
    """Fresh processor over two installed shops and a three-section catalog."""
    catalog = InMemoryCatalog(
        [
            make_section_data(section_id=sid, name=name, identifier=name.lower())
            for sid, name in CATALOG_NAMES.items()
        ]
    )
    shops = [make_shop_account(), make_shop_account(shop_domain=OTHER_SHOP_DOMAIN)]
    store = InMemoryEntitlementStore()
    processor = BillingEventProcessor(
        BillingEventNormalizer(catalog),
        ReconciliationEngine(InMemoryShopDirectory(shops), store),
    )
    return processor, store, {s.shop_domain: s.shop_id for s in shops}


@st.composite
def granting_signals(draw):
    """Any signal variant that resolves to a catalog section."""
    shop = draw(shop_domains)
    section_id = draw(st.sampled_from(CATALOG_IDS))
    charge_id = str(draw(charge_numbers))
    status = draw(granting_statuses)
    kind = draw(st.sampled_from(["redirect", "embedded", "named", "free"]))

    if kind == "redirect":
        return RedirectCallbackSignal(shop, section_id, charge_id, status)
    if kind == "embedded":
        name = charge_name_for(CATALOG_NAMES[section_id], section_id)
        return EmbeddedIdWebhookSignal(shop, name, charge_id, status)
    if kind == "named":
        name = f"Purchase section: {CATALOG_NAMES[section_id]}"
        return NamedWebhookSignal(shop, name, charge_id, status)
    return FreeGrantSignal(shop, section_id)


def _section_of(signal) -> str:
    if isinstance(signal, EmbeddedIdWebhookSignal):
        return extract_section_id(signal.charge_name)
    if isinstance(signal, NamedWebhookSignal):
        return next(sid for sid, name in CATALOG_NAMES.items() if signal.charge_name.endswith(name))
    return signal.section_id


# ============================================================================
# Reference parsing
# ============================================================================


class TestReferenceParsingProperties:
    """Properties of section id extraction."""

    @given(section_ids, st.text(max_size=40).filter(lambda s: "sectionId=" not in s))
    @settings(max_examples=100)
    def test_embedded_id_always_extracted(self, section_id, display_name):
        """Whatever the display name, an embedded id is recovered."""
        assert extract_section_id(charge_name_for(display_name, section_id)) == section_id

    @given(st.text(max_size=80).filter(lambda s: "sectionId=" not in s))
    @settings(max_examples=100)
    def test_names_without_marker_are_malformed(self, name):
        with pytest.raises(MalformedReferenceError):
            extract_section_id(name)

    @given(charge_numbers)
    def test_numeric_charge_ids_become_gids(self, number):
        charge_id = canonical_charge_id(str(number))

        assert charge_id == f"gid://shopify/AppPurchaseOneTime/{number}"
        assert canonical_charge_id(charge_id) == charge_id

    @given(section_ids)
    def test_generated_ids_are_section_ids(self, section_id):
        assert is_section_id(section_id)


# ============================================================================
# Reconciliation invariants
# ============================================================================


class TestReconciliationProperties:
    """Invariants over sequences of signals."""

    @given(granting_signals(), st.integers(min_value=1, max_value=5))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_replaying_a_signal_is_idempotent(self, signal, repeats):
        """Processing the same signal N times leaves one unchanged entitlement."""
        processor, store, _ = _build()

        first = await processor.process(signal)
        for _ in range(repeats):
            again = await processor.process(signal)
            assert again.outcome == ProcessingOutcome.RECONCILED
            assert not again.created

        assert first.created
        assert len(store.rows) == 1
        (entitlement,) = store.rows.values()
        assert entitlement == first.entitlement

    @given(st.lists(granting_signals(), min_size=1, max_size=25))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_at_most_one_entitlement_per_pair(self, signals):
        """Rows exist exactly for the distinct (shop, section) pairs processed."""
        processor, store, shop_ids = _build()

        for signal in signals:
            result = await processor.process(signal)
            assert result.reconciled

        expected_pairs = {(shop_ids[s.shop_domain], _section_of(s)) for s in signals}
        assert set(store.rows) == expected_pairs

    @given(st.lists(granting_signals(), min_size=1, max_size=25))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_last_event_wins(self, signals):
        """Each entitlement reflects the last event for its pair."""
        processor, store, shop_ids = _build()

        last_events = {}
        for signal in signals:
            result = await processor.process(signal)
            event = result.event
            last_events[(shop_ids[event.shop_domain], event.section_id)] = event

        for key, event in last_events.items():
            entitlement = store.rows[key]
            assert entitlement.charge_id == event.charge_id
            assert entitlement.status == event.status

    @given(granting_signals(), non_granting_statuses)
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_non_granting_status_never_writes(self, signal, status):
        processor, store, _ = _build()
        if isinstance(signal, FreeGrantSignal):
            signal = RedirectCallbackSignal(signal.shop_domain, signal.section_id, "1", status)
        else:
            signal = replace(signal, status=status)

        result = await processor.process(signal)

        assert result.outcome == ProcessingOutcome.INACTIVE_CHARGE
        assert store.write_calls == 0

    @given(shop_domains, st.sampled_from(CATALOG_IDS))
    @settings(max_examples=30)
    @pytest.mark.asyncio
    async def test_free_grant_matches_free_callback(self, shop, section_id):
        """A free grant is the same event as an ACTIVE callback with the FREE charge id."""
        processor, _, _ = _build()

        granted = await processor.process(FreeGrantSignal(shop, section_id))
        callback = await processor.process(
            RedirectCallbackSignal(shop, section_id, FREE_CHARGE_ID, "ACTIVE")
        )

        assert granted.event == callback.event
        assert not callback.created
        assert callback.entitlement.status == EntitlementStatus.ACTIVE

    @given(section_ids.filter(lambda s: s not in CATALOG_IDS), shop_domains)
    @settings(max_examples=30)
    @pytest.mark.asyncio
    async def test_unknown_sections_never_write(self, section_id, shop):
        processor, store, _ = _build()

        result = await processor.process(RedirectCallbackSignal(shop, section_id, "7", "ACTIVE"))

        assert result.outcome == ProcessingOutcome.SECTION_NOT_FOUND
        assert store.rows == {}
