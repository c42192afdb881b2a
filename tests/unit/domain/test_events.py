"""Unit tests for the progress event schema."""

from __future__ import annotations

import pytest

from imagebroker.domain.entities import GenerationRequest
from imagebroker.domain.enums import GenerationStatus, ProgressStep
from imagebroker.domain.events import (
    SCHEMA_VERSION,
    EndEvent,
    FinalFailureEvent,
    GenerationFailedEvent,
    ProviderSelectionEvent,
    StartEvent,
    snapshot_request,
)
from imagebroker.domain.value_objects import GeneratedAsset, Page


class TestProgressEventPayload:
    def test_common_fields(self):
        payload = StartEvent(message="Image generation started", prompt="a cat").to_payload()
        assert payload["version"] == SCHEMA_VERSION
        assert payload["step"] == "start"
        assert payload["message"] == "Image generation started"
        assert payload["prompt"] == "a cat"
        assert "timestamp" in payload

    def test_step_is_fixed_per_variant(self):
        assert ProviderSelectionEvent().step == ProgressStep.PROVIDER_SELECTION
        assert GenerationFailedEvent().step == ProgressStep.GENERATION_FAILED

    def test_variant_fields_are_present(self):
        payload = ProviderSelectionEvent(attempt=2, max_attempts=4).to_payload()
        assert payload["attempt"] == 2
        assert payload["max_attempts"] == 4

    def test_tuples_serialise_as_lists(self):
        payload = FinalFailureEvent(attempted_providers=("a", "b"), error="x").to_payload()
        assert payload["attempted_providers"] == ["a", "b"]


class TestEndEvent:
    def test_success_carries_data_only(self):
        payload = EndEvent(success=True, data={"history_id": "h1"}).to_payload()
        assert payload["step"] == "end"
        assert payload["success"] is True
        assert payload["data"] == {"history_id": "h1"}
        assert "error" not in payload

    def test_failure_carries_error_only(self):
        payload = EndEvent(success=False, error={"kind": "exhaustion"}).to_payload()
        assert payload["success"] is False
        assert payload["error"] == {"kind": "exhaustion"}
        assert "data" not in payload


class TestSnapshot:
    def test_snapshot_is_plain_data(self):
        record = GenerationRequest.start(
            user_id="u1", prompt="p", parameters={"n": 1}, provider="gemini"
        )
        snap = snapshot_request(record)
        assert snap["id"] == record.id
        assert snap["status"] == GenerationStatus.PENDING.value
        assert snap["provider_used"] == "gemini"
        assert snap["parameters"] == {"n": 1}
        assert isinstance(snap["created_at"], str)


class TestValueObjects:
    def test_asset_requires_reference(self):
        with pytest.raises(ValueError):
            GeneratedAsset(asset_url="  ")

    def test_page_offset_and_total_pages(self):
        page = Page(page=3, limit=10)
        assert page.offset == 20
        assert page.total_pages(21) == 3
        assert page.total_pages(0) == 0

    def test_page_rejects_zero(self):
        with pytest.raises(ValueError):
            Page(page=0)
        with pytest.raises(ValueError):
            Page(limit=0)
