#!/usr/bin/env python3
"""
Tests for numerai_tui/events.py
"""

import threading

import pytest

from numerai_tui.events import (
    MAX_MESSAGE_LENGTH,
    EventLog,
    Severity,
    redact_secrets,
    sanitize_message,
)


class TestEventLogCapacity:
    def test_bounded_log_keeps_latest(self):
        log = EventLog(capacity=30)
        for i in range(1, 46):
            log.info(f"event {i}")

        assert len(log) == 30
        recent = log.recent(30)
        # k=45 inserts: position 0 holds the (k-29)-th event
        assert recent[0].message == "event 16"
        assert recent[-1].message == "event 45"

    def test_recent_is_oldest_first(self):
        log = EventLog(capacity=5)
        for i in range(3):
            log.info(f"e{i}")

        assert [e.message for e in log.recent(2)] == ["e1", "e2"]
        assert [e.message for e in log.recent(10)] == ["e0", "e1", "e2"]
        assert log.recent(0) == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            EventLog(capacity=0)

    def test_concurrent_adds(self):
        log = EventLog(capacity=1000)

        def writer(n):
            for i in range(100):
                log.info(f"{n}-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(log) == 500


class TestEventLogEntries:
    def test_severity_helpers(self):
        log = EventLog()
        log.info("a")
        log.warning("b")
        log.error("c")
        log.success("d")

        assert [e.severity for e in log.recent(4)] == [
            Severity.INFO, Severity.WARNING, Severity.ERROR, Severity.SUCCESS,
        ]

    def test_add_accepts_string_severity(self):
        log = EventLog()
        entry = log.add("warning", "disk almost full")
        assert entry.severity is Severity.WARNING

    def test_unknown_severity(self):
        with pytest.raises(ValueError):
            EventLog().add("fatal", "x")

    def test_timestamp_from_clock(self):
        log = EventLog(clock=lambda: 0.0)
        entry = log.info("x")
        assert entry.timestamp == 0.0
        assert len(entry.format_time()) == 8

    def test_on_add_callback(self):
        seen = []
        log = EventLog(on_add=seen.append)
        entry = log.success("done")
        assert seen == [entry]


class TestSanitize:
    def test_strips_ansi(self):
        assert sanitize_message("\x1b[31mred\x1b[0m text") == "red text"

    def test_collapses_control_chars(self):
        assert sanitize_message("line1\nline2\r\tx") == "line1 line2 x"

    def test_truncates(self):
        message = sanitize_message("x" * 500)
        assert len(message) == MAX_MESSAGE_LENGTH
        assert message.endswith("...")

    def test_non_string(self):
        assert sanitize_message(ValueError("boom")) == "boom"

    def test_redacts_token_header(self):
        text = redact_secrets("Authorization: Token ABCDEF123$secretvalue99")
        assert "secretvalue99" not in text
        assert "[NUMERAI_TOKEN]" in text

    def test_redacts_env_assignment(self):
        text = redact_secrets("NUMERAI_SECRET_KEY=abc123")
        assert text == "NUMERAI_SECRET_KEY=[REDACTED]"

    def test_log_stores_sanitized(self):
        log = EventLog()
        entry = log.error("failed with NUMERAI_PUBLIC_ID=XYZ\x1b[2J")
        assert "XYZ" not in entry.message
        assert "\x1b" not in entry.message
