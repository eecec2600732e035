"""
Tests for provider status mapping and the platform status ordering.
"""

import pytest

from callhelm.calls.enums import PROGRESSION_INDEX, TERMINAL_STATUSES, CallStatus
from callhelm.reconciliation.statuses import (
    PROVIDER_STATUS_MAP,
    is_answer_status,
    map_provider_status,
)


class TestProviderStatusMap:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("queued", CallStatus.INITIATED),
            ("initiated", CallStatus.INITIATED),
            ("ringing", CallStatus.RINGING),
            ("answered", CallStatus.ANSWERED),
            ("in-progress", CallStatus.ANSWERED),
            ("completed", CallStatus.COMPLETED),
            ("busy", CallStatus.BUSY),
            ("no-answer", CallStatus.NO_ANSWER),
            ("failed", CallStatus.FAILED),
            ("canceled", CallStatus.CANCELED),
        ],
    )
    def test_known_statuses(self, raw: str, expected: CallStatus) -> None:
        assert map_provider_status(raw) == expected

    def test_table_has_no_unlisted_entries(self) -> None:
        assert len(PROVIDER_STATUS_MAP) == 10

    @pytest.mark.parametrize(
        "raw", ["", None, "voicemail", "machine-start", "IN PROGRESS", "call.hangup"]
    )
    def test_unmapped_statuses_fail_safe(self, raw: str | None) -> None:
        assert map_provider_status(raw) == CallStatus.FAILED

    def test_mapping_ignores_case_and_whitespace(self) -> None:
        assert map_provider_status("  In-Progress ") == CallStatus.ANSWERED

    def test_answer_statuses(self) -> None:
        assert is_answer_status("in-progress")
        assert is_answer_status("ANSWERED")
        assert not is_answer_status("ringing")
        assert not is_answer_status("completed")


class TestProgressionIndex:
    def test_setup_stages_are_ordered(self) -> None:
        order = [
            CallStatus.INITIATED,
            CallStatus.RINGING,
            CallStatus.ANSWERED,
            CallStatus.CONTACT_CONNECTED,
        ]
        indexes = [status.progression_index for status in order]
        assert indexes == sorted(indexes)
        assert len(set(indexes)) == len(indexes)

    def test_terminal_statuses_share_the_last_index(self) -> None:
        top = max(PROGRESSION_INDEX.values())
        assert {s.progression_index for s in TERMINAL_STATUSES} == {top}
        assert all(s.is_terminal for s in TERMINAL_STATUSES)
        assert not CallStatus.CONTACT_CONNECTED.is_terminal

    def test_every_status_has_an_index(self) -> None:
        assert set(PROGRESSION_INDEX) == set(CallStatus)
