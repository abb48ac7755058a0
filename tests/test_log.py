import json

import structlog

from bidhouse.log import configure_logging


def test_json_format_renders_one_object_per_line(capsys):
    configure_logging("INFO", "json")
    try:
        log = structlog.get_logger()
        log.debug("hidden")
        log.info("bid_accepted", auction_id=3, amount="12")
        lines = [l for l in capsys.readouterr().out.splitlines() if l.strip()]
        assert len(lines) == 1
        event = json.loads(lines[0])
        assert event["event"] == "bid_accepted"
        assert event["level"] == "info"
        assert event["auction_id"] == 3
        assert "timestamp" in event
    finally:
        structlog.reset_defaults()
