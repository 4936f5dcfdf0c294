from __future__ import annotations

import io
import json

import structlog

from agent_bridge.log import MASK, configure_logging, get_logger, mask_sensitive_values


def test_sensitive_values_are_masked():
    event = {"event": "spawned", "secret_key": "abc", "X-Secret-Key": "abc", "port": 4321}
    masked = mask_sensitive_values(None, "info", event)
    assert masked == {"event": "spawned", "secret_key": MASK, "X-Secret-Key": MASK, "port": 4321}


def test_json_logs_written_to_stream():
    stream = io.StringIO()
    configure_logging("DEBUG", json_logs=True, stream=stream)
    try:
        get_logger("tests.logging").info("Agent server spawned", port=4321, secret_key="hunter2")
    finally:
        structlog.reset_defaults()

    record = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert record["event"] == "Agent server spawned"
    assert record["logger"] == "agent_bridge.tests.logging"
    assert record["port"] == 4321
    assert record["secret_key"] == MASK
