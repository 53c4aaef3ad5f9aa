import io
import json

from loguru import logger

from rcn_api.core.logging import JsonLineSink
from rcn_api.observability.tracing import parse_otlp_headers


def test_json_sink_renders_structured_context() -> None:
    stream = io.StringIO()
    handler_id = logger.add(JsonLineSink(service_name="rcn-api", environment="test", version="9.9.9", stream=stream))
    try:
        logger.bind(logger_name="rcn.test").info("Redemption session created", session_id="abc", amount="40")
    finally:
        logger.remove(handler_id)

    payload = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert payload["message"] == "Redemption session created"
    assert payload["level"] == "info"
    assert payload["logger"] == "rcn.test"
    assert payload["service"] == "rcn-api"
    assert payload["version"] == "9.9.9"
    assert payload["session_id"] == "abc"
    assert payload["amount"] == "40"


def test_otlp_header_parsing() -> None:
    assert parse_otlp_headers(None) is None
    assert parse_otlp_headers("") is None
    assert parse_otlp_headers("api-key=abc, x-team = redemption ,broken") == {
        "api-key": "abc",
        "x-team": "redemption",
    }
