from datetime import datetime, timedelta, timezone

from pdfrelay.files import (
    incoming_name,
    incoming_rel_path,
    outgoing_name,
    outgoing_rel_path,
    sanitize_filename,
)

STAMP = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_sanitize_replaces_each_unsafe_char() -> None:
    assert sanitize_filename("my report (final)!.PDF") == "my_report__final__.PDF"
    assert sanitize_filename("ok-name_1.pdf") == "ok-name_1.pdf"
    assert sanitize_filename("отчёт.pdf") == "_____.pdf"


def test_sanitize_truncates() -> None:
    assert len(sanitize_filename("a" * 500)) == 120


def test_incoming_name_keeps_existing_pdf_suffix() -> None:
    name = incoming_name("my report (final)!.PDF", 42, now=STAMP)
    assert name == "2024-01-02-03-04-05_42_my_report__final__.PDF"


def test_incoming_name_appends_suffix() -> None:
    assert incoming_name("scan", 7, now=STAMP) == "2024-01-02-03-04-05_7_scan.pdf"


def test_incoming_name_defaults() -> None:
    assert (
        incoming_name(None, None, now=STAMP)
        == "2024-01-02-03-04-05_unknown_document.pdf"
    )
    assert incoming_name("", 1, now=STAMP) == "2024-01-02-03-04-05_1_document.pdf"


def test_incoming_name_converts_to_utc() -> None:
    local = STAMP.astimezone(timezone(timedelta(hours=3)))
    assert incoming_name("a.pdf", 1, now=local).startswith("2024-01-02-03-04-05_")


def test_outgoing_name() -> None:
    assert outgoing_name("x_1_a.pdf") == "x_1_a_compressed.pdf"
    assert outgoing_name("x_1_a.PDF") == "x_1_a_compressed.pdf"


def test_rel_paths() -> None:
    assert incoming_rel_path("a.pdf") == "incoming/a.pdf"
    assert outgoing_rel_path("a.pdf") == "outgoing/a_compressed.pdf"
