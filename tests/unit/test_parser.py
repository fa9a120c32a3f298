"""Tests for reply parsing."""

from datetime import datetime, timezone

import pytest

from mailgate.core.approval.parser import (
    Ignored,
    Malformed,
    ParsedDecision,
    RawMessage,
    ReplyParser,
    classify_outcome,
    find_token,
    parse_reply,
    strip_quoted,
    subject_marker,
)
from mailgate.core.approval.states import Outcome

from tests.factories import build_raw_email, build_reply

TOKEN = "0123456789abcdef0123456789abcdef"


class TestFindToken:
    """Tests for locating the token reference."""

    def test_subject_marker(self):
        assert find_token(f"Re: {subject_marker(TOKEN)} Approval request", "") == TOKEN

    def test_marker_is_case_insensitive_and_normalised(self):
        subject = f"RE: [mg-approval: {TOKEN.upper()} ]"
        assert find_token(subject, "") == TOKEN

    def test_body_marker(self):
        assert find_token("Re: your request", f"Approved\n{subject_marker(TOKEN)}") == TOKEN

    def test_body_token_line(self):
        assert find_token("Re: your request", f"Approved\n\nApproval-Token: {TOKEN}\n") == TOKEN

    def test_quoted_body_token_line(self):
        """Test the token line still counts after the mail client quoted it."""
        body = f"Approved\n\n> Hello,\n> Approval-Token: {TOKEN}\n"
        assert find_token("Re: your request", body) == TOKEN

    def test_subject_wins_over_body(self):
        other = "f" * 32
        assert find_token(f"Re: {subject_marker(TOKEN)}", f"Approval-Token: {other}") == TOKEN

    def test_short_token_is_not_a_reference(self):
        assert find_token("Re: [MG-APPROVAL:abc123]", "") is None


class TestStripQuoted:
    """Tests for dropping quoted text."""

    def test_drops_quoted_lines(self):
        text = strip_quoted("Approved\n> please reply APPROVED or REJECTED\nthanks")
        assert text == "Approved\nthanks"

    def test_stops_at_reply_header(self):
        body = "Rejected\n\nOn Mon, Jan 1, 2024 at 12:00 PM MailGate <a@b.com> wrote:\nApproved"
        assert strip_quoted(body).strip() == "Rejected"

    def test_stops_at_original_message(self):
        body = "Declined.\n-----Original Message-----\nwrite APPROVED or REJECTED"
        assert strip_quoted(body).strip() == "Declined."


class TestClassifyOutcome:
    """Tests for the outcome vocabulary."""

    @pytest.mark.parametrize("text", ["Approved", "approve", "ACCEPTED", "I accept, thanks."])
    def test_approve_words(self, text):
        assert classify_outcome(text) == (Outcome.APPROVE, None)

    @pytest.mark.parametrize("text", ["Rejected", "decline", "Denied - see comments", "I deny this."])
    def test_reject_words(self, text):
        assert classify_outcome(text) == (Outcome.REJECT, None)

    def test_whole_words_only(self):
        """Test words that merely contain a keyword do not count."""
        outcome, reason = classify_outcome("This is disapproved and unaccepted")
        assert outcome is None
        assert reason == "no decision keyword"

    def test_approval_is_not_a_keyword(self):
        assert classify_outcome("Approval request: budget")[0] is None

    def test_both_vocabularies(self):
        outcome, reason = classify_outcome("approve the draft but reject the annex")
        assert outcome is None
        assert "both" in reason

    @pytest.mark.parametrize("text", ["not approved", "I don't approve", "I don’t approve", "This cannot be accepted"])
    def test_negation_is_ambiguous(self, text):
        outcome, reason = classify_outcome(text)
        assert outcome is None
        assert reason == "negated decision keyword"


class TestParseReply:
    """Tests for classifying inbound messages."""

    def test_approved_reply(self):
        message = build_reply(TOKEN, "Approved", message_id="<m1@x.com>")
        result = parse_reply(message)

        assert isinstance(result, ParsedDecision)
        assert result.token_id == TOKEN
        assert result.outcome == Outcome.APPROVE
        assert result.source_message_id == "<m1@x.com>"
        assert result.sender == "approver@x.com"

    def test_rejected_reply(self):
        result = parse_reply(build_reply(TOKEN, "Rejected, the figures are wrong."))
        assert isinstance(result, ParsedDecision)
        assert result.outcome == Outcome.REJECT

    def test_quoted_request_text_is_ignored(self):
        """Test the quoted request, which names both keywords, does not make the reply ambiguous."""
        body = (
            "Approved.\n\n"
            "On Mon, Jan 1, 2024 at 12:00 PM MailGate <approvals@example.com> wrote:\n"
            "> To decide, reply to this e-mail and write APPROVED or REJECTED\n"
            f"> Approval-Token: {TOKEN}\n"
        )
        result = parse_reply(build_reply(TOKEN, body))
        assert isinstance(result, ParsedDecision)
        assert result.outcome == Outcome.APPROVE

    def test_subject_fallback(self):
        message = build_reply(TOKEN, "Sent from my phone", subject=f"Re: {subject_marker(TOKEN)} Approved")
        result = parse_reply(message)
        assert isinstance(result, ParsedDecision)
        assert result.outcome == Outcome.APPROVE

    def test_no_token_is_ignored(self):
        result = parse_reply(build_reply(None, "Approved", subject="Lunch on Friday?"))
        assert isinstance(result, Ignored)

    def test_no_keyword_is_malformed(self):
        result = parse_reply(build_reply(TOKEN, "Thanks, will look at it tomorrow"))
        assert isinstance(result, Malformed)
        assert result.token_id == TOKEN
        assert result.reason == "no decision keyword"

    def test_negated_body_does_not_fall_back_to_subject(self):
        message = build_reply(TOKEN, "Not approved yet", subject=f"Re: {subject_marker(TOKEN)} Approved")
        result = parse_reply(message)
        assert isinstance(result, Malformed)

    def test_reply_parser_is_callable(self):
        parser = ReplyParser()
        message = build_reply(TOKEN, "Declined")
        assert parser(message) == parser.parse(message) == parse_reply(message)


class TestRawMessageFromBytes:
    """Tests for building messages from RFC 822 bytes."""

    def test_plain_text(self):
        raw = build_raw_email(
            subject=f"Re: {subject_marker(TOKEN)} Approval request: Budget",
            body="Approved\n",
            message_id="<abc@x.com>",
        )
        message = RawMessage.from_bytes("42", raw)

        assert message.uid == "42"
        assert message.message_id == "<abc@x.com>"
        assert message.sender == "approver@x.com"
        assert message.body.strip() == "Approved"
        assert message.received_at == datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)
        assert isinstance(parse_reply(message), ParsedDecision)

    def test_html_only(self):
        raw = build_raw_email(
            subject=f"Re: {subject_marker(TOKEN)}",
            body="",
            html="<html><body><p>Rejected</p></body></html>",
        )
        message = RawMessage.from_bytes("7", raw)

        assert "Rejected" in message.body
        assert "<p>" not in message.body
        assert parse_reply(message).outcome == Outcome.REJECT

    def test_missing_message_id_uses_uid(self):
        raw = b"From: a@x.com\r\nSubject: hello\r\n\r\nApproved\r\n"
        message = RawMessage.from_bytes("9", raw)
        assert message.message_id == "<uid-9>"
