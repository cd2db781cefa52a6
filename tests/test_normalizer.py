"""Tests for the message normalizer."""

from datetime import datetime

import pytest

from app.errors import MalformedMessageError
from app.services.normalizer import (
    classify_labels,
    extract_address,
    extract_addresses,
    fallback_message_id,
    normalize_mime,
    normalize_provider_record,
    parse_date,
    resolve_message_id,
)


class TestExtractAddress:
    def test_plain_string(self):
        assert extract_address("Alice <Alice@Example.com>") == "alice@example.com"

    def test_object_with_address(self):
        assert extract_address({"address": "bob@example.com", "name": "Bob"}) == "bob@example.com"

    def test_object_with_value_list(self):
        field = {"value": [{"address": "carol@example.com"}, {"address": "dave@example.com"}]}
        assert extract_address(field) == "carol@example.com"
        assert extract_addresses(field) == ["carol@example.com", "dave@example.com"]

    def test_list_of_mixed(self):
        assert extract_addresses(["a@example.com", {"address": "b@example.com"}]) == [
            "a@example.com",
            "b@example.com",
        ]

    def test_unknown_shapes_degrade(self):
        assert extract_address(None) == ""
        assert extract_address(42) == ""
        assert extract_address({"foo": "bar"}) == ""
        assert extract_addresses(None) == []
        assert extract_addresses({"value": "not a list"}) == []


class TestClassifyLabels:
    @pytest.mark.parametrize("labels,expected", [
        (["sent"], "sent"),
        (["draft"], "draft"),
        (["inbox"], "inbox"),
        (["important"], "inbox"),
        ([], "inbox"),
        (["SENT", "important"], "sent"),
        (["draft", "sent"], "sent"),
    ])
    def test_classification(self, labels, expected):
        assert classify_labels(labels) == expected


class TestParseDate:
    def test_iso_with_zone_becomes_naive_utc(self):
        assert parse_date("2024-01-01T12:00:00+02:00") == datetime(2024, 1, 1, 10, 0)

    def test_rfc2822(self):
        assert parse_date("Mon, 01 Jan 2024 10:00:00 +0000") == datetime(2024, 1, 1, 10, 0)

    def test_fallback_used_when_invalid(self):
        assert parse_date("not a date", "2024-01-02T00:00:00Z") == datetime(2024, 1, 2)

    def test_nothing_parses(self):
        assert parse_date(None) is None
        assert parse_date("garbage", "also garbage") is None


class TestMessageId:
    def test_native_id_wins(self):
        assert resolve_message_id("<a@x>", [("Message-ID", "<b@x>")], "s", "subj", None) == "<a@x>"

    def test_case_variant_header(self):
        headers = [("Subject", "Hi"), ("message-id", "<variant@x>")]
        assert resolve_message_id(None, headers, "s", "subj", None) == "<variant@x>"

    def test_fallback_format(self):
        sent_at = datetime(2024, 1, 1, 10, 0)
        assert fallback_message_id("alice@example.com", "Re: Hello world!", sent_at) == (
            "alice@example.com_Re__Hello_world__2024-01-01T10_00_00"
        )

    def test_fallback_is_deterministic(self, mime):
        raw = mime(message_id=None, subject="No id here")
        first = normalize_mime(raw)
        second = normalize_mime(raw)
        assert first.message_id == second.message_id
        assert first.message_id.startswith("alice@example.com_No_id_here_")

    def test_fallback_logs_warning(self, caplog):
        with caplog.at_level("WARNING"):
            resolve_message_id(None, [], "a@example.com", "Hi", None)
        assert "No Message-ID found" in caplog.text


class TestNormalizeMime:
    def test_basic_fields(self, mime):
        draft = normalize_mime(
            mime(
                subject="Hello",
                to="Me <me@example.com>, other@example.com",
                html="<p>Hello <b>there</b></p>",
                references="<r1@x> <r2@x>",
                in_reply_to="<r2@x>",
            ),
            flags=(b"\\Seen", b"\\Flagged"),
        )
        assert draft.message_id == "<m1@example.com>"
        assert draft.subject == "Hello"
        assert draft.from_address.address == "alice@example.com"
        assert draft.from_address.name == "Alice"
        assert [a.address for a in draft.to] == ["me@example.com", "other@example.com"]
        assert draft.in_reply_to == "<r2@x>"
        assert draft.references == ["<r1@x>", "<r2@x>"]
        assert draft.sent_at == datetime(2024, 1, 1, 10, 0)
        assert draft.email_label == "inbox"
        assert draft.sys_labels == ["inbox"]
        assert draft.folder == "INBOX"
        assert draft.is_read is True
        assert draft.is_starred is True
        assert "Hello there" in draft.body_text
        assert "<b>there</b>" in draft.body_html
        assert draft.snippet.startswith("Hello there")

    def test_unread_without_seen_flag(self, mime):
        draft = normalize_mime(mime(), flags=())
        assert draft.is_read is False
        assert draft.is_starred is False

    def test_attachment(self, mime):
        from email import message_from_bytes
        from email.policy import default

        msg = message_from_bytes(mime(), policy=default)
        msg.add_attachment(b"%PDF-1.4 data", maintype="application", subtype="pdf", filename="cv.pdf")
        draft = normalize_mime(msg.as_bytes())

        assert draft.has_attachments is True
        assert len(draft.attachments) == 1
        attachment = draft.attachments[0]
        assert attachment.name == "cv.pdf"
        assert attachment.mime_type == "application/pdf"
        assert attachment.size == len(b"%PDF-1.4 data")
        # Stable across normalizations
        assert normalize_mime(msg.as_bytes()).attachments[0].id == attachment.id

    def test_empty_source_is_malformed(self):
        with pytest.raises(MalformedMessageError):
            normalize_mime(b"")
        with pytest.raises(MalformedMessageError):
            normalize_mime(None)


class TestNormalizeProviderRecord:
    def test_basic_record(self, record):
        draft = normalize_provider_record(record(labels=["sent", "important"]))
        assert draft.remote_id == "m1"
        assert draft.thread_id == "t1"
        assert draft.message_id == "<m1@example.com>"
        assert draft.email_label == "sent"
        assert draft.from_address.address == "a@example.com"
        assert draft.sent_at == datetime(2024, 1, 1, 10, 0)
        assert draft.is_read is True

    def test_message_id_from_internet_headers(self, record):
        raw = record(internetMessageId=None)
        raw["internetHeaders"] = [{"name": "MESSAGE-ID", "value": "<hdr@x>"}]
        assert normalize_provider_record(raw).message_id == "<hdr@x>"

    def test_dates_fall_back_to_created_time(self, record):
        raw = record(sent_at=None)
        raw["createdTime"] = "2024-03-01T08:00:00Z"
        draft = normalize_provider_record(raw)
        assert draft.sent_at == datetime(2024, 3, 1, 8, 0)
        assert draft.received_at == datetime(2024, 3, 1, 8, 0)

    def test_snippet_from_body_when_missing(self, record):
        draft = normalize_provider_record(record(subject="Interview schedule"))
        assert draft.snippet == "Interview schedule"

    def test_unread_label(self, record):
        assert normalize_provider_record(record(labels=["inbox", "unread"])).is_read is False

    def test_record_without_id_is_malformed(self, record):
        with pytest.raises(MalformedMessageError):
            normalize_provider_record(record(id=None))
        with pytest.raises(MalformedMessageError):
            normalize_provider_record("not a dict")
