"""Tests for contact extraction from enrichment poll payloads."""

import pytest

from src.enrichment.extract import (
    EMAIL_FIELDS,
    PHONE_FIELDS,
    extract_values,
    first_value,
    parse_poll_payload,
    person_record,
)


class TestFirstValue:
    @pytest.mark.parametrize(
        ("entry", "expected"),
        [
            ("ada@example.com", "ada@example.com"),
            ({"email": "ada@example.com"}, "ada@example.com"),
            ({"email": "", "value": "ada@work.io"}, "ada@work.io"),
            ({"emailAddress": "a@b.c", "validationStatus": "VALID"}, "a@b.c"),
            ({"confidence": 0.9}, None),
            ("", None),
            (42, None),
        ],
    )
    def test_emails(self, entry: object, expected: str | None) -> None:
        assert first_value(entry, EMAIL_FIELDS) == expected

    def test_phone_field_order(self) -> None:
        entry = {"value": "+1 555 0000", "mobilePhone": "+44 20 0000"}
        assert first_value(entry, PHONE_FIELDS) == "+44 20 0000"

    def test_extract_values_skips_empty(self) -> None:
        assert extract_values([{"number": "+1"}, {}, None, "+2"], PHONE_FIELDS) == ["+1", "+2"]
        assert extract_values("not-a-list", PHONE_FIELDS) == []


class TestPersonRecord:
    def test_prefers_people(self) -> None:
        assert person_record({"people": [{"id": 1}], "person": {"id": 2}}) == {"id": 1}

    def test_results_then_person(self) -> None:
        assert person_record({"results": [{"id": 3}]}) == {"id": 3}
        assert person_record({"people": [], "person": {"id": 2}}) == {"id": 2}
        assert person_record({"people": ["junk"]}) == {}


class TestParsePollPayload:
    def test_completed_with_contacts(self) -> None:
        snapshot = parse_poll_payload(
            {
                "enrichmentID": "e1",
                "status": "IN_PROGRESS",
                "people": [
                    {
                        "status": "COMPLETED",
                        "emails": [{"email": "ada@example.com", "validationStatus": "VALID"}],
                        "mobilePhones": [{"mobilePhone": "+44 20 0000", "confidenceScore": 0.8}],
                    }
                ],
            }
        )
        assert snapshot.emails == ["ada@example.com"]
        assert snapshot.phones == ["+44 20 0000"]
        assert snapshot.status == "COMPLETED"
        assert snapshot.completed

    def test_top_level_status_fallback(self) -> None:
        snapshot = parse_poll_payload({"status": "IN_PROGRESS", "people": [{}]})
        assert snapshot.status == "IN_PROGRESS"
        assert not snapshot.completed

    def test_non_dict_payload(self) -> None:
        snapshot = parse_poll_payload(["COMPLETED"])
        assert (snapshot.emails, snapshot.phones, snapshot.status) == ([], [], None)
