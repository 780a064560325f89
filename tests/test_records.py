import pytest

from app.shared.records import (
    INVALID_EMAIL_REASON,
    RecordMap,
    RecordValidationError,
    find_missing,
    is_valid_email,
    validate_records,
)

ALICE_BOB = "Name,Course,Email\nAlice,CS101,alice@x.com\nBob,CS101,not-an-email\n"


def test_alice_and_bob_split():
    result = validate_records(ALICE_BOB, ["Name", "Course"])

    assert result.total_rows == 2
    assert result.column_names == ["Name", "Course", "Email"]
    assert result.email_column == "Email"
    assert [r.email for r in result.valid_records] == ["alice@x.com"]
    assert [(i.email, i.reason) for i in result.invalid_emails] == [
        ("not-an-email", INVALID_EMAIL_REASON)
    ]
    assert result.invalid_emails[0].row_number == 2


def test_counts_add_up_and_revalidation_is_stable():
    csv_text = (
        "name,EMAIL\n"
        "A,a@x.com\n"
        "B,b@\n"
        "C,\n"
        "D,a@x.com\n"
    )
    first = validate_records(csv_text)
    second = validate_records(csv_text)

    assert len(first.valid_records) + len(first.invalid_emails) == first.total_rows == 4
    assert first.summary() == second.summary()
    # duplicates are kept, blank email is valid but undeliverable
    assert [r.email for r in first.valid_records] == ["a@x.com", None, "a@x.com"]


def test_empty_input_is_not_an_error():
    for raw in ("", b"", "   \n"):
        result = validate_records(raw)
        assert result.total_rows == 0
        assert result.valid_records == []
        assert result.invalid_emails == []


def test_header_only_file():
    result = validate_records("Name,Email\n")
    assert result.total_rows == 0
    assert result.column_names == ["Name", "Email"]


def test_without_email_column_every_row_is_valid():
    result = validate_records("Name\nAlice\nBob\n", ["Name"])
    assert result.email_column is None
    assert [r.email for r in result.valid_records] == [None, None]
    assert result.invalid_emails == []


def test_missing_placeholder_columns_are_reported_not_rejected():
    result = validate_records("Name,Email\nAlice,alice@x.com\n", ["name", "Course"])
    assert result.missing_columns == ["Course"]
    assert len(result.valid_records) == 1


def test_bom_and_bytes_are_accepted():
    raw = ("\ufeff" + ALICE_BOB).encode("utf-8")
    result = validate_records(raw)
    assert result.column_names[0] == "Name"
    assert result.total_rows == 2


def test_non_utf8_bytes_raise():
    with pytest.raises(RecordValidationError):
        validate_records(b"Name\n\xff\xfe\xfa\n")


def test_values_are_stripped_and_case_insensitive():
    result = validate_records("NAME , Email\n  Alice  , alice@x.com \n")
    values = result.valid_records[0].values
    assert values["name"] == "Alice"
    assert values.lookup("Name") == "Alice"
    assert result.valid_records[0].email == "alice@x.com"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("a@b.co", True),
        ("first.last+tag@sub.example.org", True),
        ("no-at-sign", False),
        ("a@b", False),
        ("a b@c.com", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_email(value, expected):
    assert is_valid_email(value) is expected


def test_record_map_with_defaults_keeps_existing_spelling():
    values = RecordMap({"NAME": "Alice"})
    merged = values.with_defaults(["name", "Course"])
    assert merged.to_dict() == {"NAME": "Alice", "Course": ""}
    assert "course" in merged
    assert len(merged) == 2


def test_find_missing_is_case_insensitive_and_deduplicated():
    assert find_missing(["Name", "name", "Date"], ["NAME"]) == ["Date"]
