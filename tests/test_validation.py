"""
Unit tests for enrollment input validation.

Tests cover:
- Voter create/patch field rules
- Elector sub-record all-or-none rule
- Reference batch rules
- Masking helpers
"""

from datetime import date

from enrollment.validation import (
    Err,
    Ok,
    calculate_age,
    check_elector_invariant,
    clean_contact,
    mask_contact,
    mask_identity,
    validate_references,
    validate_voter_create,
    validate_voter_patch,
)
from tests.conftest import voter_payload

TODAY = date(2026, 1, 1)


def _fields(result):
    assert isinstance(result, Err)
    return {e.field for e in result.errors}


class TestVoterCreate:
    """Tests for validate_voter_create."""

    def test_valid_payload(self):
        """Valid payload is cleaned and gets a computed age."""
        result = validate_voter_create(voter_payload(), today=TODAY)

        assert isinstance(result, Ok)
        assert result.value["identity_number"] == "123456789012"
        assert result.value["age"] == 35
        assert result.value["email"] == "asha@example.com"

    def test_contact_country_code_stripped(self):
        """+91 prefix, spaces and hyphens are removed from the contact."""
        result = validate_voter_create(voter_payload(contact="+91 98765-43210"), today=TODAY)

        assert isinstance(result, Ok)
        assert result.value["contact"] == "9876543210"

    def test_bad_identity_number(self):
        """Identity number must be 12 digits."""
        result = validate_voter_create(voter_payload(identity_number="12345"), today=TODAY)
        assert "identity_number" in _fields(result)

    def test_bad_contact(self):
        """Mobile numbers start with 6-9."""
        result = validate_voter_create(voter_payload(contact="1234567890"), today=TODAY)
        assert "contact" in _fields(result)

    def test_underage(self):
        """Voters must be at least 18."""
        result = validate_voter_create(voter_payload(date_of_birth="2015-01-01"), today=TODAY)
        assert "date_of_birth" in _fields(result)

    def test_errors_are_reported_together(self):
        """Every failing field is listed, not just the first."""
        result = validate_voter_create(
            voter_payload(identity_number="1", contact="12", pincode="41"),
            today=TODAY,
        )
        assert {"identity_number", "contact", "pincode"} <= _fields(result)

    def test_unknown_field_rejected(self):
        """Unexpected keys are a validation error."""
        result = validate_voter_create(voter_payload(favourite_colour="blue"), today=TODAY)
        assert "favourite_colour" in _fields(result)

    def test_registered_elector_needs_all_fields(self):
        """A registered elector must supply the whole elector sub-record."""
        result = validate_voter_create(
            voter_payload(is_registered_elector=True, assembly_number="210"),
            today=TODAY,
        )
        assert _fields(result) == {"assembly_name", "polling_station_number", "epic_number"}

    def test_registered_elector_complete(self):
        """Complete elector sub-record passes; EPIC is upper-cased."""
        result = validate_voter_create(
            voter_payload(
                is_registered_elector=True,
                assembly_number="210",
                assembly_name="Shivajinagar",
                polling_station_number="45",
                epic_number="abc1234567",
            ),
            today=TODAY,
        )
        assert isinstance(result, Ok)
        assert result.value["epic_number"] == "ABC1234567"

    def test_non_elector_with_elector_fields(self):
        """Non-electors must leave the elector fields empty."""
        result = validate_voter_create(voter_payload(epic_number="ABC1234567"), today=TODAY)
        assert _fields(result) == {"epic_number"}

    def test_non_elector_blank_strings_ok(self):
        """Blank strings count as empty."""
        result = validate_voter_create(
            voter_payload(assembly_number="", assembly_name="  ", epic_number=""),
            today=TODAY,
        )
        assert isinstance(result, Ok)
        assert result.value["assembly_number"] is None

    def test_graduation_year_bounds(self):
        """Graduation year must be between 1950 and the current year."""
        result = validate_voter_create(voter_payload(graduation_year=1901), today=TODAY)
        assert "graduation_year" in _fields(result)


class TestVoterPatch:
    """Tests for validate_voter_patch."""

    def test_only_set_fields(self):
        """Only fields the caller sent are returned."""
        result = validate_voter_patch({"occupation": "Engineer"}, today=TODAY)

        assert isinstance(result, Ok)
        assert result.value == {"occupation": "Engineer"}

    def test_bad_name(self):
        """Name rules apply to patches too."""
        result = validate_voter_patch({"full_name": "A"}, today=TODAY)
        assert _fields(result) == {"full_name"}

    def test_required_field_cannot_be_nulled(self):
        """Required columns cannot be cleared."""
        result = validate_voter_patch({"street": None}, today=TODAY)
        assert _fields(result) == {"street"}


class TestElectorInvariant:
    """Tests for check_elector_invariant on merged records."""

    def test_clean_non_elector(self):
        assert check_elector_invariant({"is_registered_elector": False}) == []

    def test_partial_elector(self):
        errors = check_elector_invariant({"is_registered_elector": True, "epic_number": "ABC1234567"})
        assert len(errors) == 3


class TestReferences:
    """Tests for validate_references."""

    def test_valid_batch(self):
        result = validate_references(
            [
                {"reference_name": "Ravi Kumar", "reference_contact": "9000000001"},
                {"reference_name": "Meena Joshi", "reference_contact": "+91 90000 00002"},
            ],
            voter_contact="9876543210",
        )
        assert isinstance(result, Ok)
        assert result.value == [("Ravi Kumar", "9000000001"), ("Meena Joshi", "9000000002")]

    def test_own_contact_rejected(self):
        """A voter cannot list themselves as a reference."""
        result = validate_references(
            [{"reference_name": "Me Again", "reference_contact": "9876543210"}],
            voter_contact="9876543210",
        )
        assert _fields(result) == {"references[0].reference_contact"}

    def test_duplicate_in_request(self):
        """The same contact twice in one request is rejected at the second item."""
        result = validate_references(
            [
                {"reference_name": "Ravi Kumar", "reference_contact": "9000000001"},
                {"reference_name": "Ravi Again", "reference_contact": "9000000001"},
            ],
            voter_contact="9876543210",
        )
        assert _fields(result) == {"references[1].reference_contact"}

    def test_missing_name(self):
        result = validate_references(
            [{"reference_name": " ", "reference_contact": "9000000001"}],
            voter_contact="9876543210",
        )
        assert _fields(result) == {"references[0].reference_name"}

    def test_empty_batch(self):
        result = validate_references([], voter_contact="9876543210")
        assert _fields(result) == {"references"}


class TestHelpers:
    """Tests for masking and cleaning helpers."""

    def test_mask_identity(self):
        assert mask_identity("123456789012") == "1234****9012"

    def test_mask_contact(self):
        assert mask_contact("9876543210") == "9876****10"

    def test_mask_empty(self):
        assert mask_identity(None) is None

    def test_clean_contact_keeps_ten_digits(self):
        """A ten-digit number starting with 91 is not treated as a country code."""
        assert clean_contact("9123456789") == "9123456789"

    def test_calculate_age_before_birthday(self):
        assert calculate_age(date(2000, 6, 1), today=date(2026, 5, 31)) == 25
