"""Tests for the NDJSON session log."""

import json

from scale_bridge.logs import DualNdjsonLogger, NdjsonLogger
from scale_bridge.models import ConnectionStatus, FailureReason, Reading, UnitKind


def read_records(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestNdjsonLogger:
    """Test suite for NdjsonLogger."""

    def test_records_have_sequence_numbers(self, tmp_path):
        with NdjsonLogger(str(tmp_path)) as log:
            log.status("Bridge starting", {"adapter": "hci0"})
            log.event("STABLE", device="scale")
            path = log.current_path

        records = read_records(path)
        assert [r["seq"] for r in records] == [1, 2]
        assert records[0]["type"] == "status"
        assert records[0]["data"] == {"adapter": "hci0"}
        assert records[1]["device"] == "scale"
        assert path.name.startswith("scale_")

    def test_regular_mode_filters_debug(self, tmp_path):
        with NdjsonLogger(str(tmp_path)) as log:
            log.verbose_whitelist.add("reading")
            log.debug("raw_frame", {"hex": "00"})
            log.debug("reading", {"weight": 1.0})
            path = log.current_path

        assert [r["msg"] for r in read_records(path)] == ["reading"]

    def test_verbose_mode_keeps_debug(self, tmp_path):
        with NdjsonLogger(str(tmp_path)) as log:
            log.mode = "verbose"
            log.debug("raw_frame")
            path = log.current_path

        assert read_records(path)[0]["type"] == "debug"

    def test_reading_and_connection_helpers(self, tmp_path):
        with NdjsonLogger(str(tmp_path)) as log:
            log.reading("STABLE", Reading(1500.0, UnitKind.GRAM, True))
            log.connection(ConnectionStatus.failed(FailureReason.SERVICE_NOT_FOUND, "missing"))
            path = log.current_path

        reading, failure = read_records(path)
        assert reading["data"]["weight"] == 1500.0
        assert reading["data"]["unit"] == "g"
        assert failure["type"] == "error"
        assert failure["data"] == {
            "state": "failed",
            "reason": "service_not_found",
            "message": "missing",
        }


def test_dual_logger_writes_debug_file(tmp_path):
    log = DualNdjsonLogger(str(tmp_path / "main"), str(tmp_path / "debug"))
    log.debug("raw_frame")
    log.status("Scale active")
    main_path, debug_path = log.current_path, log.debug_path
    log.close()

    assert [r["msg"] for r in read_records(main_path)] == ["Scale active"]
    debug_records = read_records(debug_path)
    assert [r["msg"] for r in debug_records] == ["raw_frame", "Scale active"]
    assert [r["seq"] for r in debug_records] == [1, 2]
