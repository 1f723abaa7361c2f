"""Tests for merging extracted entities into remembered entities."""

from receptionist.conversation.entity_memory import merge
from receptionist.schemas.memory_schema import BookingEntities, RememberedEntities


class TestFieldPrecedence:
    def test_extracted_value_wins(self):
        result = merge(BookingEntities(name="Alexandra"), RememberedEntities(name="Alex"))
        assert result.entities.name == "Alexandra"

    def test_remembered_value_kept_when_not_extracted(self):
        remembered = RememberedEntities(name="Alex", requested_date="2025-06-02")
        result = merge(BookingEntities(requested_time="14:00"), remembered)
        assert result.entities.name == "Alex"
        assert result.entities.requested_date == "2025-06-02"
        assert result.entities.requested_time == "14:00:00"

    def test_absent_fields_stay_absent(self):
        result = merge(BookingEntities(), RememberedEntities())
        assert result.entities.party_size is None
        assert result.entities.email is None

    def test_merge_does_not_mutate_remembered(self):
        remembered = RememberedEntities(name="Alex")
        merge(BookingEntities(name="Sam"), remembered)
        assert remembered.name == "Alex"

    def test_null_strings_do_not_overwrite(self):
        extracted = BookingEntities.model_validate({"name": "null", "email": ""})
        result = merge(extracted, RememberedEntities(name="Alex", email="a@b.example"))
        assert result.entities.name == "Alex"
        assert result.entities.email == "a@b.example"


class TestPhoneAcceptance:
    def test_valid_phone_accepted(self):
        result = merge(BookingEntities(phone="555-123-4567"), RememberedEntities())
        assert result.entities.phone == "5551234567"
        assert result.phone_changed is True
        assert result.rejected_phone is None

    def test_partial_phone_rejected_and_logged(self):
        result = merge(BookingEntities(phone="555 1234"), RememberedEntities())
        assert result.entities.phone is None
        assert result.rejected_phone == "5551234"

    def test_partial_phone_keeps_previous_valid_number(self):
        remembered = RememberedEntities(phone="5551234567")
        for partial in ("1", "55512", "555123456"):
            result = merge(BookingEntities(phone=partial), remembered)
            assert result.entities.phone == "5551234567"
            assert result.phone_changed is False

    def test_different_valid_phone_is_a_correction(self):
        remembered = RememberedEntities(phone="5551234567")
        result = merge(BookingEntities(phone="5559876543"), remembered)
        assert result.entities.phone == "5559876543"
        assert result.phone_changed is True

    def test_same_phone_is_not_a_change(self):
        remembered = RememberedEntities(phone="5551234567")
        result = merge(BookingEntities(phone="(555) 123-4567"), remembered)
        assert result.phone_changed is False


class TestMissingFields:
    def test_all_missing(self):
        assert RememberedEntities().missing_booking_fields() == ["name", "phone", "date", "time"]

    def test_partial_phone_counts_as_missing(self):
        entities = RememberedEntities(
            name="Alex", phone="5551234", requested_date="2025-06-02", requested_time="14:00"
        )
        assert entities.missing_booking_fields() == ["phone"]

    def test_complete_booking(self):
        entities = RememberedEntities(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="14:00"
        )
        assert entities.missing_booking_fields() == []

    def test_party_size_coerced_to_int(self):
        assert BookingEntities(party_size="4").party_size == 4
        assert BookingEntities(party_size="six").party_size is None
        assert BookingEntities(party_size=0).party_size is None
