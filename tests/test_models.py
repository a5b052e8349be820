"""Tests for Courier data models."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest
from conftest import make_event, make_target
from pydantic import ValidationError

from courier.models import (
    ALL_EVENT_TYPES,
    Delivery,
    DeliverySummary,
    Event,
    Target,
    dedupe_event_id,
    delivery_id_for,
    as_utc,
    derive_id,
    generate_id,
    to_epoch_ms,
)


class TestIds:
    """Tests for ID helpers."""

    def test_generate_id_has_prefix(self):
        assert generate_id("evt").startswith("evt_")
        assert generate_id("evt") != generate_id("evt")

    def test_derive_id_is_stable(self):
        assert derive_id("dlv", "a", "b") == derive_id("dlv", "a", "b")
        assert len(derive_id("dlv", "a", "b")) == len("dlv_") + 24

    def test_derive_id_separates_parts(self):
        """("ab", "c") and ("a", "bc") must not collide."""
        assert derive_id("x", "ab", "c") != derive_id("x", "a", "bc")

    def test_to_epoch_ms(self):
        moment = datetime(2024, 5, 1, 12, 30, 15, 250000, tzinfo=UTC)
        assert to_epoch_ms(moment) == 1714566615250
        assert to_epoch_ms(moment.replace(tzinfo=None)) == 1714566615250

    def test_as_utc(self):
        naive = datetime(2024, 5, 1, 12, 30)
        assert as_utc(naive) == datetime(2024, 5, 1, 12, 30, tzinfo=UTC)
        plus_two = datetime(2024, 5, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc(plus_two).tzinfo is UTC
        assert as_utc(plus_two) == as_utc(naive)


class TestEvent:
    """Tests for Event model."""

    def test_create_without_dedupe_key_uses_random_id(self):
        first = make_event()
        second = make_event()
        assert first.id != second.id
        assert first.dedupe_key is None

    def test_create_with_dedupe_key_derives_id(self):
        first = make_event(dedupe_key="wamid.1")
        second = make_event(dedupe_key="wamid.1", payload={"other": True})
        assert first.id == second.id == dedupe_event_id("acc_1", "wamid.1")

    def test_dedupe_key_is_scoped_per_account(self):
        first = make_event(dedupe_key="k1")
        second = make_event(account_id="acc_2", dedupe_key="k1")
        assert first.id != second.id

    def test_occurred_at_defaults_to_now(self):
        before = datetime.now(UTC)
        event = make_event()
        assert before <= event.occurred_at <= datetime.now(UTC)

    def test_event_is_immutable(self):
        event = make_event()
        with pytest.raises(ValidationError):
            event.payload = {"changed": True}  # type: ignore[misc]

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValidationError):
            make_event(event_type="message.deleted")

    def test_unknown_source_rejected(self):
        with pytest.raises(ValidationError):
            make_event(source="smtp")

    def test_payload_may_be_any_json_value(self):
        assert make_event(payload=[1, "two", None]).payload == [1, "two", None]
        assert make_event(payload="plain").payload == "plain"
        assert make_event(payload=None).payload is None


class TestWebhookEnvelope:
    """Tests for the outbound JSON body."""

    def test_naive_occurred_at_is_read_as_utc(self):
        event = make_event(occurred_at=datetime(2024, 1, 2, 3, 4, 5))

        assert event.occurred_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        body = json.loads(event.to_envelope().to_body())
        assert body["occurredAt"] == 1704164645000

    def test_body_uses_camel_case_and_epoch_ms(self):
        occurred = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        event = make_event(occurred_at=occurred, source="twilio_webhook")

        body = json.loads(event.to_envelope().to_body())

        assert body == {
            "id": event.id,
            "type": "message.inbound.received",
            "source": "twilio_webhook",
            "occurredAt": to_epoch_ms(occurred),
            "accountId": "acc_1",
            "payload": {"from": "+15550100", "text": "hello"},
        }

    def test_body_is_compact(self):
        body = make_event().to_envelope().to_body()
        assert ": " not in body
        assert ", " not in body


class TestTarget:
    """Tests for Target model."""

    def test_defaults(self):
        target = Target(account_id="acc_1", url="https://example.com/h", signing_secret="s")
        assert target.enabled is True
        assert target.max_attempts == 8
        assert target.timeout_ms == 10_000
        assert target.subscribed_events == set(ALL_EVENT_TYPES)
        assert target.consecutive_failures == 0

    @pytest.mark.parametrize("value", [0, 21])
    def test_max_attempts_bounds(self, value):
        with pytest.raises(ValidationError):
            make_target(max_attempts=value)

    @pytest.mark.parametrize("value", [999, 60_001])
    def test_timeout_bounds(self, value):
        with pytest.raises(ValidationError):
            make_target(timeout_ms=value)

    def test_invalid_url_rejected(self):
        with pytest.raises(ValidationError):
            make_target(url="not a url")

    def test_subscribes_to(self):
        target = make_target(subscribed_events={"message.status.updated"})
        assert target.subscribes_to("message.status.updated")
        assert not target.subscribes_to("message.inbound.received")

    def test_disabled_target_subscribes_to_nothing(self):
        target = make_target(enabled=False)
        assert not target.subscribes_to("message.inbound.received")

    def test_failure_streak_and_reset(self):
        target = make_target()
        at = datetime.now(UTC)
        target.record_failure(at, "Unexpected status 500")
        target.record_failure(at + timedelta(seconds=5), "Unexpected status 502")

        assert target.consecutive_failures == 2
        assert target.last_error == "Unexpected status 502"
        assert target.last_failure_at == at + timedelta(seconds=5)

        target.record_success(at + timedelta(seconds=15))
        assert target.consecutive_failures == 0
        assert target.last_error is None
        assert target.last_success_at == target.last_delivery_at


class TestDelivery:
    """Tests for Delivery model."""

    def test_for_target_is_pending_and_due(self):
        delivery = Delivery.for_target("evt_1", "acc_1", "tgt_1", max_attempts=3)
        assert delivery.id == delivery_id_for("evt_1", "tgt_1")
        assert delivery.status == "pending"
        assert delivery.attempt_count == 0
        assert delivery.next_attempt_at == delivery.created_at

    def test_attempt_count_cannot_exceed_budget(self):
        with pytest.raises(ValidationError):
            Delivery(
                id="dlv_1",
                account_id="acc_1",
                event_id="evt_1",
                target_id="tgt_1",
                attempt_count=4,
                max_attempts=3,
            )

    def test_begin_attempt_spends_budget(self):
        delivery = Delivery.for_target("evt_1", "acc_1", "tgt_1", max_attempts=2)
        delivery.begin_attempt()
        assert delivery.can_retry
        delivery.begin_attempt()
        assert delivery.budget_exhausted
        assert not delivery.can_retry
        with pytest.raises(ValueError):
            delivery.begin_attempt()

    def test_begin_attempt_on_terminal_raises(self):
        delivery = Delivery.for_target("evt_1", "acc_1", "tgt_1", max_attempts=2)
        delivery.mark_failed(at=datetime.now(UTC), error="Target disabled")
        with pytest.raises(ValueError):
            delivery.begin_attempt()

    def test_mark_succeeded(self):
        at = datetime.now(UTC)
        delivery = Delivery.for_target("evt_1", "acc_1", "tgt_1", max_attempts=2)
        delivery.begin_attempt()
        delivery.mark_retrying(at, at + timedelta(seconds=5), "Unexpected status 500", 500)
        delivery.mark_succeeded(at + timedelta(seconds=5), 200, "ok")

        assert delivery.is_terminal
        assert delivery.delivered_at == at + timedelta(seconds=5)
        assert delivery.next_attempt_at is None
        assert delivery.last_error is None
        assert delivery.last_status_code == 200

    def test_is_due(self):
        at = datetime.now(UTC)
        delivery = Delivery.for_target("evt_1", "acc_1", "tgt_1", max_attempts=2)
        delivery.begin_attempt(lease_until=at + timedelta(seconds=30))

        assert not delivery.is_due(at)
        assert delivery.is_due(at + timedelta(seconds=30))
        assert delivery.model_copy(update={"next_attempt_at": None}).is_due(at)

    def test_recency_falls_back_to_created_at(self):
        delivery = Delivery.for_target("evt_1", "acc_1", "tgt_1", max_attempts=2)
        assert delivery.recency == delivery.created_at
        later = delivery.created_at + timedelta(minutes=1)
        delivery.mark_failed(at=later, error="x")
        assert delivery.recency == later

    def test_summary_accepts_unknown_event_type(self):
        summary = DeliverySummary(
            id="dlv_1",
            event_id="evt_gone",
            event_type="unknown",
            status="failed",
            attempt_count=1,
            max_attempts=1,
        )
        assert summary.event_occurred_at is None


def test_event_round_trips_through_json():
    event = make_event(dedupe_key="abc")
    assert Event.model_validate(event.model_dump(mode="json")) == event
