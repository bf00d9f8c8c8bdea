"""Tests for the write-intent queue lifecycle and retry backoff."""

from __future__ import annotations

import pytest

from healthsync.errors import HealthValidationError, IntentNotFoundError
from healthsync.health.tests.conftest import MINUTE_MS, NOON_FEB_23, FakeClock, intent_payload
from healthsync.health.write_intents import WriteIntentQueue, backoff_ms
from healthsync.models.write_intents import WriteIntentAck


class TestBackoff:
    @pytest.mark.parametrize(
        "attempts,minutes",
        [(0, 5), (1, 10), (2, 20), (5, 160), (6, 320), (7, 320), (40, 320)],
    )
    def test_doubles_then_caps(self, attempts: int, minutes: int) -> None:
        assert backoff_ms(attempts) == minutes * MINUTE_MS

    def test_negative_treated_as_zero(self) -> None:
        assert backoff_ms(-3) == 5 * MINUTE_MS


class TestUpsert:
    @pytest.mark.asyncio
    async def test_creates_pending_intent(self, queue: WriteIntentQueue) -> None:
        result = await queue.upsert(intent_payload())
        assert result.created is True
        intent = result.intent
        assert intent.status == "pending"
        assert intent.attempt_count == 0
        assert intent.next_retry_at_ms == NOON_FEB_23
        assert intent.created_at_ms == NOON_FEB_23
        assert intent.intent_id

    @pytest.mark.asyncio
    async def test_same_external_id_resets(self, queue: WriteIntentQueue, clock: FakeClock) -> None:
        first = await queue.upsert(intent_payload())
        await queue.ack(WriteIntentAck(external_id=first.intent.external_id, status="failed", error_code="denied"))

        clock.advance(MINUTE_MS)
        second = await queue.upsert(intent_payload(value_number=700.0))

        assert second.created is False
        assert second.intent.intent_id == first.intent.intent_id
        assert second.intent.created_at_ms == first.intent.created_at_ms
        assert second.intent.value_number == 700.0
        assert second.intent.attempt_count == 0
        assert second.intent.failure_code is None
        assert second.intent.next_retry_at_ms == clock.now

    @pytest.mark.asyncio
    async def test_rejects_inverted_window(self, queue: WriteIntentQueue) -> None:
        with pytest.raises(HealthValidationError, match="endTimeMs"):
            await queue.upsert(intent_payload(end_time_ms=NOON_FEB_23 - 1))

    @pytest.mark.asyncio
    async def test_rejects_blank_external_id(self, queue: WriteIntentQueue) -> None:
        with pytest.raises(HealthValidationError, match="externalId is required"):
            await queue.upsert(intent_payload(external_id="  "))

    @pytest.mark.asyncio
    async def test_rejects_unknown_timezone(self, queue: WriteIntentQueue) -> None:
        with pytest.raises(HealthValidationError, match="Unknown timezone"):
            await queue.upsert(intent_payload(timezone="Atlantis/Capital"))


class TestAck:
    @pytest.mark.asyncio
    async def test_applied(self, queue: WriteIntentQueue, clock: FakeClock) -> None:
        await queue.upsert(intent_payload())
        clock.advance(MINUTE_MS)
        intent = await queue.ack(WriteIntentAck(
            external_id="meal-2026-02-23-lunch",
            status="applied",
            healthkit_uuid="hk-123",
            applied_at_ms=NOON_FEB_23 + 30_000,
        ))
        assert intent.status == "applied"
        assert intent.healthkit_uuid == "hk-123"
        assert intent.applied_at_ms == NOON_FEB_23 + 30_000
        assert intent.last_attempt_at_ms == clock.now

    @pytest.mark.asyncio
    async def test_applied_defaults_applied_at_to_now(self, queue: WriteIntentQueue) -> None:
        await queue.upsert(intent_payload())
        intent = await queue.ack(WriteIntentAck(external_id="meal-2026-02-23-lunch", status="applied"))
        assert intent.applied_at_ms == NOON_FEB_23

    @pytest.mark.asyncio
    async def test_skipped_is_terminal(self, queue: WriteIntentQueue) -> None:
        await queue.upsert(intent_payload())
        intent = await queue.ack(WriteIntentAck(external_id="meal-2026-02-23-lunch", status="skipped"))
        assert intent.status == "skipped"
        page = await queue.list_pending(10, now_ms=NOON_FEB_23 + 10**9)
        assert page.items == []

    @pytest.mark.asyncio
    async def test_failed_backs_off(self, queue: WriteIntentQueue, clock: FakeClock) -> None:
        await queue.upsert(intent_payload())

        first = await queue.ack(WriteIntentAck(
            external_id="meal-2026-02-23-lunch", status="failed", error_code="hk_error", error_message="boom",
        ))
        assert first.status == "pending"
        assert first.attempt_count == 1
        assert first.next_retry_at_ms == clock.now + 5 * MINUTE_MS
        assert first.failure_message == "boom"

        second = await queue.ack(WriteIntentAck(external_id="meal-2026-02-23-lunch", status="failed"))
        assert second.attempt_count == 2
        assert second.next_retry_at_ms == clock.now + 10 * MINUTE_MS

    @pytest.mark.asyncio
    async def test_unknown_intent(self, queue: WriteIntentQueue) -> None:
        with pytest.raises(IntentNotFoundError, match="Intent not found"):
            await queue.ack(WriteIntentAck(external_id="missing", status="applied"))


class TestListPending:
    @pytest.mark.asyncio
    async def test_only_due_intents(self, queue: WriteIntentQueue, clock: FakeClock) -> None:
        await queue.upsert(intent_payload("a"))
        await queue.upsert(intent_payload("b"))
        await queue.ack(WriteIntentAck(external_id="a", status="failed"))

        page = await queue.list_pending(10)
        assert [i.external_id for i in page.items] == ["b"]

        clock.advance(5 * MINUTE_MS)
        page = await queue.list_pending(10)
        assert sorted(i.external_id for i in page.items) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_oldest_first_with_cursor(self, queue: WriteIntentQueue, clock: FakeClock) -> None:
        for name in ("first", "second", "third"):
            await queue.upsert(intent_payload(name))
            clock.advance(1)

        page = await queue.list_pending(2)
        assert [i.external_id for i in page.items] == ["first", "second"]
        assert page.next_cursor is not None

        rest = await queue.list_pending(2, page.next_cursor)
        assert [i.external_id for i in rest.items] == ["third"]
        assert rest.next_cursor is None

    @pytest.mark.asyncio
    async def test_limit_bounds(self, queue: WriteIntentQueue) -> None:
        with pytest.raises(HealthValidationError, match="between 1 and 200"):
            await queue.list_pending(201)


class TestListByStatus:
    @pytest.mark.asyncio
    async def test_filters_and_orders_by_update(self, queue: WriteIntentQueue, clock: FakeClock) -> None:
        await queue.upsert(intent_payload("a"))
        clock.advance(1)
        await queue.upsert(intent_payload("b"))
        clock.advance(1)
        await queue.ack(WriteIntentAck(external_id="a", status="applied"))

        everything = await queue.list_by_status(None, 10)
        assert [i.external_id for i in everything] == ["a", "b"]
        applied = await queue.list_by_status("applied", 10)
        assert [i.external_id for i in applied] == ["a"]

    @pytest.mark.asyncio
    async def test_bad_status(self, queue: WriteIntentQueue) -> None:
        with pytest.raises(HealthValidationError, match="status must be"):
            await queue.list_by_status("done", 10)
