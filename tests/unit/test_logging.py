import logging

from core.exceptions import NetworkError
from core.logging import ErrorContextFormatter, LOG_FORMAT


def make_record(**extra):
    record = logging.LogRecord("trail_import.adapters.base", logging.WARNING, __file__, 1, "region failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_error_context_appended():
    error = NetworkError(
        "Server error after 3 attempts",
        context={"provider": "usgs", "region": "Utah", "status_code": 503, "response_body": "x" * 50},
    )
    line = ErrorContextFormatter(LOG_FORMAT).format(make_record(error_context=error.to_dict()))

    assert line.endswith("region failed | error_type=NetworkError, provider=usgs, region=Utah, status_code=503")
    assert "response_body" not in line


def test_plain_records_unchanged():
    line = ErrorContextFormatter("%(message)s").format(make_record())
    assert line == "region failed"
