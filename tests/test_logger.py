"""Tests for logging setup and credential masking."""

import logging
from logging.handlers import RotatingFileHandler

from core import logger as log_setup


def make_record(msg, *args):
    return logging.LogRecord("remote.client", logging.INFO, __file__, 1, msg, args, None)


class TestRedactingFilter:
    def test_masks_bearer_token(self):
        record = make_record("Request headers: %s", {"Authorization": "Bearer abc.def.ghi"})

        assert log_setup.RedactingFilter().filter(record) is True
        assert "abc.def.ghi" not in record.getMessage()
        assert "Bearer ***" in record.getMessage()

    def test_masks_password_and_token_fields(self):
        record = make_record(
            "Payload %s, reset token=%s",
            {"email": "asha@example.com", "password": "hunter2"},
            "r3set",
        )

        log_setup.RedactingFilter().filter(record)
        message = record.getMessage()

        assert "hunter2" not in message
        assert "r3set" not in message
        assert "asha@example.com" in message

    def test_leaves_plain_messages_untouched(self):
        record = make_record("Token is not valid for %s", "u1")

        log_setup.RedactingFilter().filter(record)

        assert record.args == ("u1",)
        assert record.getMessage() == "Token is not valid for u1"


class TestHandlers:
    def test_file_handler_writes_masked_lines(self, tmp_path, monkeypatch):
        log_file = tmp_path / "logs" / "shop.log"
        monkeypatch.setenv("LOG_TO_STDOUT", "false")
        monkeypatch.setenv("LOG_TO_FILE", "true")
        monkeypatch.setenv("LOG_FILE", str(log_file))

        handlers = log_setup._build_handlers(logging.INFO)
        assert len(handlers) == 1
        handler = handlers[0]
        assert isinstance(handler, RotatingFileHandler)

        handler.handle(make_record("Authorization: Bearer tok-valid"))
        handler.close()

        text = log_file.read_text(encoding="utf-8")
        assert "tok-valid" not in text
        assert "Bearer ***" in text

    def test_no_handlers_when_both_outputs_disabled(self, monkeypatch):
        monkeypatch.setenv("LOG_TO_STDOUT", "0")
        monkeypatch.setenv("LOG_TO_FILE", "no")

        assert log_setup._build_handlers(logging.INFO) == []
