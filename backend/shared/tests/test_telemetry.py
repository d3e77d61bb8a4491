import logging

from pools.tests.mocks.telemetry import FailingTelemetrySink, RecordingTelemetrySink
from shared.telemetry import LogTelemetrySink, NullTelemetrySink, emit_safely


class TestEmitSafely:
    def test_forwards_event(self):
        sink = RecordingTelemetrySink()
        emit_safely(sink, "pool_locked", pool_id="p1")
        assert sink.events == [("pool_locked", {"pool_id": "p1"})]

    def test_contains_sink_failure(self, caplog):
        with caplog.at_level(logging.WARNING):
            emit_safely(FailingTelemetrySink(), "pool_locked", pool_id="p1")
        assert "telemetry sink failed" in caplog.text

    def test_null_sink_accepts_anything(self):
        emit_safely(NullTelemetrySink(), "anything", value=1)


class TestLogTelemetrySink:
    def test_writes_event_as_log_line(self, caplog):
        with caplog.at_level(logging.INFO):
            LogTelemetrySink().emit("pool_created", pool_id="p1", cells=100)

        record = next(r for r in caplog.records if isinstance(r.msg, dict) and r.msg.get("event") == "pool_created")
        assert record.msg["pool_id"] == "p1"
        assert record.msg["cells"] == 100

    def test_level_is_configurable(self, caplog):
        with caplog.at_level(logging.INFO):
            LogTelemetrySink(level="warning").emit("operation_retry", attempt=1)
        assert any(r.levelno == logging.WARNING for r in caplog.records)
