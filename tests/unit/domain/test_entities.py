"""Unit tests for domain entities."""

from __future__ import annotations

import pytest

from imagebroker.domain.entities import GenerationRequest, Provider, UserPreference
from imagebroker.domain.enums import AUTO_PROVIDER, GenerationStatus
from imagebroker.domain.exceptions import InvalidStatusTransitionError


def _pending(provider: str = "stablediffusion") -> GenerationRequest:
    return GenerationRequest.start(
        user_id="user-1",
        prompt="a lighthouse at dusk",
        parameters={"size": "1024x1024"},
        provider=provider,
    )


class TestGenerationStatus:
    def test_pending_can_finish_either_way(self):
        assert GenerationStatus.PENDING.can_transition_to(GenerationStatus.COMPLETED)
        assert GenerationStatus.PENDING.can_transition_to(GenerationStatus.FAILED)

    def test_terminal_states_only_return_to_pending(self):
        for terminal in (GenerationStatus.COMPLETED, GenerationStatus.FAILED):
            assert terminal.is_terminal
            assert terminal.can_transition_to(GenerationStatus.PENDING)
            assert not terminal.can_transition_to(GenerationStatus.COMPLETED)
            assert not terminal.can_transition_to(GenerationStatus.FAILED)

    def test_pending_is_not_terminal(self):
        assert not GenerationStatus.PENDING.is_terminal


class TestGenerationRequest:
    def test_start_is_pending_and_attributed(self):
        record = _pending()
        assert record.status == GenerationStatus.PENDING
        assert record.provider_used == "stablediffusion"
        assert record.asset_url is None
        assert record.error_message is None
        assert record.parameters == {"size": "1024x1024"}

    def test_complete_sets_asset_and_clears_error(self):
        record = _pending()
        record.complete("paper://stablediffusion/abc", cost=0.9)
        assert record.status == GenerationStatus.COMPLETED
        assert record.asset_url == "paper://stablediffusion/abc"
        assert record.error_message is None
        assert record.cost == 0.9

    def test_complete_requires_asset(self):
        record = _pending()
        with pytest.raises(ValueError):
            record.complete("")
        assert record.status == GenerationStatus.PENDING

    def test_fail_sets_error_and_clears_asset(self):
        record = _pending()
        record.fail("[stablediffusion] timeout")
        assert record.status == GenerationStatus.FAILED
        assert record.error_message == "[stablediffusion] timeout"
        assert record.asset_url is None

    def test_fail_with_empty_message_keeps_an_error(self):
        record = _pending()
        record.fail("")
        assert record.error_message

    def test_cannot_complete_twice(self):
        record = _pending()
        record.complete("paper://x/1")
        with pytest.raises(InvalidStatusTransitionError):
            record.complete("paper://x/2")

    def test_cannot_fail_a_completed_record(self):
        record = _pending()
        record.complete("paper://x/1")
        with pytest.raises(InvalidStatusTransitionError):
            record.fail("late failure")

    def test_reassign_after_failure_keeps_identity(self):
        record = _pending()
        original_id = record.id
        record.fail("[stablediffusion] boom")
        record.reassign("kieai")
        assert record.id == original_id
        assert record.status == GenerationStatus.PENDING
        assert record.provider_used == "kieai"
        assert record.error_message is None

    def test_reassign_while_pending_only_moves_provider(self):
        record = _pending()
        record.reassign("gemini")
        assert record.status == GenerationStatus.PENDING
        assert record.provider_used == "gemini"

    def test_restart_resets_creation_time(self):
        record = _pending()
        record.complete("paper://x/1")
        created = record.created_at
        record.restart()
        assert record.status == GenerationStatus.PENDING
        assert record.asset_url is None
        assert record.created_at >= created

    def test_restart_from_pending_is_rejected(self):
        with pytest.raises(InvalidStatusTransitionError):
            _pending().restart()

    def test_unattributed_failure(self):
        record = GenerationRequest.unattributed_failure(
            user_id="user-1", prompt="p", parameters=None, error="No eligible provider available"
        )
        assert record.status == GenerationStatus.FAILED
        assert record.provider_used is None
        assert record.error_message == "No eligible provider available"
        assert record.parameters == {}


class TestProvider:
    def test_request_quota_takes_precedence(self):
        p = Provider(name="photai", quota_requests=25, quota_credits=99)
        assert p.quota_limit == 25

    def test_credit_quota_used_when_no_request_quota(self):
        assert Provider(name="kieai", quota_credits=8).quota_limit == 8

    def test_no_quota(self):
        assert Provider(name="gemini").quota_limit is None

    def test_negative_usage_rejected(self):
        with pytest.raises(ValueError):
            Provider(name="x", usage_count=-1)

    def test_label_falls_back_to_name(self):
        assert Provider(name="kieai").label == "kieai"
        assert Provider(name="kieai", display_name="GPT4o").label == "GPT4o"


class TestUserPreference:
    def test_defaults_are_auto_and_free_first(self):
        prefs = UserPreference()
        assert prefs.preferred_provider == AUTO_PROVIDER
        assert prefs.is_auto
        assert prefs.prioritize_free

    def test_named_provider_is_not_auto(self):
        assert not UserPreference(preferred_provider="gemini").is_auto
