"""
Tests for the verification state machine and level ordering
"""

import pytest

from kyc_service.core.errors import ValidationError
from kyc_service.db.models import VerificationRecord
from kyc_service.services.kyc_state import (
    KycLevel,
    KycStatus,
    can_transition,
    level_value,
    parse_level,
    parse_requested_level,
    parse_status,
    transition,
)

from conftest import NOW


def make_record(status="NOT_STARTED", level="NONE", history=None):
    return VerificationRecord(user_id="user-1", status=status, verification_level=level, history=history or [])


class TestLevels:
    """Tests for verification level ordering"""

    def test_levels_are_strictly_ordered(self):
        """NONE < BASIC < STANDARD < ADVANCED < ENHANCED"""
        ranks = [level_value(level) for level in ("NONE", "BASIC", "STANDARD", "ADVANCED", "ENHANCED")]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 5

    def test_level_names_are_not_compared_as_strings(self):
        """ADVANCED sorts before BASIC alphabetically but ranks above it"""
        assert level_value("ADVANCED") > level_value("BASIC")
        assert level_value(KycLevel.ENHANCED) > level_value("standard")

    def test_unknown_level_ranks_as_none(self):
        assert level_value("platinum") == level_value(KycLevel.NONE)
        assert level_value(None) == 0

    def test_parse_level_accepts_loose_casing(self):
        assert parse_level("advanced") is KycLevel.ADVANCED
        assert parse_level(" Basic ") is KycLevel.BASIC

    def test_none_cannot_be_requested(self):
        with pytest.raises(ValidationError):
            parse_requested_level("NONE")

    def test_invalid_level_rejected(self):
        with pytest.raises(ValidationError):
            parse_level("gold")


class TestTransitions:
    """Tests for allowed status transitions"""

    @pytest.mark.parametrize("current,new", [
        ("NOT_STARTED", "IN_PROGRESS"),
        ("IN_PROGRESS", "APPROVED"),
        ("IN_PROGRESS", "NEEDS_REVIEW"),
        ("PENDING", "REJECTED"),
        ("NEEDS_REVIEW", "APPROVED"),
        ("APPROVED", "EXPIRED"),
        ("APPROVED", "NEEDS_REVIEW"),
        ("REJECTED", "IN_PROGRESS"),
        ("EXPIRED", "IN_PROGRESS"),
    ])
    def test_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        ("NOT_STARTED", "APPROVED"),
        ("REJECTED", "APPROVED"),
        ("EXPIRED", "APPROVED"),
        ("IN_PROGRESS", "EXPIRED"),
        ("NOT_STARTED", "NOT_STARTED"),
    ])
    def test_disallowed(self, current, new):
        assert not can_transition(current, new)

    def test_parse_status_rejects_unknown(self):
        with pytest.raises(ValidationError):
            parse_status("DONE")

    def test_transition_appends_exactly_one_entry(self):
        record = make_record()
        entry = transition(
            record,
            KycStatus.IN_PROGRESS,
            "Verification Started",
            details={"level": "STANDARD"},
            session_id="sess-1",
            now=NOW,
        )

        assert record.status == "IN_PROGRESS"
        assert record.history == [entry]
        assert entry["previous_status"] == "NOT_STARTED"
        assert entry["new_status"] == "IN_PROGRESS"
        assert entry["performed_by"] == "SYSTEM"
        assert entry["session_id"] == "sess-1"
        assert entry["timestamp"] == NOW.isoformat()

    def test_transition_never_drops_existing_entries(self):
        original = [{"action": "Verification Started"}]
        record = make_record(status="IN_PROGRESS", history=original)

        transition(record, "APPROVED", "Verification Completed", now=NOW)

        assert len(record.history) == 2
        assert record.history[0] == {"action": "Verification Started"}
        # The list is replaced, not mutated in place
        assert original == [{"action": "Verification Started"}]

    def test_rejected_transition_leaves_record_untouched(self):
        record = make_record(status="REJECTED", history=[{"action": "x"}])

        with pytest.raises(ValidationError):
            transition(record, "APPROVED", "StatusUpdate", now=NOW)

        assert record.status == "REJECTED"
        assert record.history == [{"action": "x"}]
