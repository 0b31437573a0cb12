from __future__ import annotations

import json
import logging

from gopcache.infra.logging import configure_logging, get_logger, redact_secrets

SIGNED_URL = "https://user:pw@cdn.example.com/x.mp4?token=SECRET123"


class TestRedactSecrets:
    def test_masks_secret_keys(self):
        event = redact_secrets(None, None, {"event": "x", "token": "abc", "api_key": "k"})
        assert event["token"] == "***REDACTED***"
        assert event["api_key"] == "***REDACTED***"
        assert event["event"] == "x"

    def test_masks_credentials_in_urls(self):
        event = redact_secrets(None, None, {"url": "https://user:pw@cdn.example.com/a.mp4?token=123&x=1"})
        assert event["url"] == "https://***@cdn.example.com/a.mp4?token=***&x=1"

    def test_masks_nested_values(self):
        event = redact_secrets(None, None, {"urls": ["https://a/b.mp4?sig=abc"], "meta": {"src": "password=hunter2"}})
        assert event["urls"] == ["https://a/b.mp4?sig=***"]
        assert event["meta"] == {"src": "password=***"}


class TestConfigureLogging:
    def _last_record(self, capsys) -> dict:
        lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
        return json.loads(lines[-1])

    def test_stdlib_records_are_redacted(self, capsys):
        configure_logging("INFO", json_output=True)
        logging.getLogger("gopcache.runtime.media_cache").error("%s: meta load failed", SIGNED_URL)

        record = self._last_record(capsys)
        assert record["event"] == "https://***@cdn.example.com/x.mp4?token=***: meta load failed"
        assert record["level"] == "error"
        assert record["logger"] == "gopcache.runtime.media_cache"
        assert "SECRET123" not in json.dumps(record)

    def test_stdlib_records_below_level_are_dropped(self, capsys):
        configure_logging("WARNING", json_output=True)
        logging.getLogger("gopcache.runtime.scheduler").info("%s: acquired", SIGNED_URL)
        assert capsys.readouterr().err == ""

    def test_reconfiguring_keeps_one_handler(self):
        configure_logging("INFO")
        configure_logging("DEBUG")
        handlers = [h for h in logging.getLogger().handlers if h.get_name() == "gopcache"]
        assert len(handlers) == 1
        assert logging.getLogger().level == logging.DEBUG


def test_get_logger_binds_service():
    configure_logging("DEBUG", json_output=True)
    logger = get_logger("gopcache.test", component="cli")
    assert logger._context["service"] == "gopcache"
    assert logger._context["component"] == "cli"
