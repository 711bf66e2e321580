import json

from conftest import DummyLogger
from endpointremediator.models import RunState, StepOutcome, StepResult
from endpointremediator.services.report import ReportSummarizer
from endpointremediator.services.run_record import RunRecordService


def test_run_record_writes_steps_and_summary(tmp_path):
    record_file = tmp_path / "records" / "run.json"
    service = RunRecordService(str(record_file), logger=DummyLogger())
    results = [
        StepResult("stop-outlook", StepOutcome.PERFORMED, detail="Stopped OUTLOOK.EXE", target="OUTLOOK.EXE"),
        StepResult("retire-ost-files", StepOutcome.SKIPPED_NOT_NEEDED, detail="Not needed"),
    ]

    service.start_run("run-123", "outlook-cache", dry_run=False, log_file="C:/logs/run.log")
    service.add_results(results)
    service.set_summary(ReportSummarizer().summarize(results, state=RunState.COMPLETED))
    service.finalize("completed")

    data = json.loads(record_file.read_text(encoding="utf-8"))

    assert data["run_id"] == "run-123"
    assert data["recipe"] == "outlook-cache"
    assert data["status"] == "completed"
    assert data["steps"][0]["outcome"] == "performed"
    assert data["steps"][1]["outcome"] == "skipped"
    assert data["summary"]["counts"]["performed"] == 1
    assert data["duration_seconds"] >= 0
    assert list(record_file.parent.glob("run-record-*.json")) == []


def test_run_record_without_file_is_noop(tmp_path):
    service = RunRecordService(None, logger=DummyLogger())

    service.finalize("completed")

    assert list(tmp_path.iterdir()) == []


def test_run_record_write_failure_is_warning_only(tmp_path):
    warnings = []

    class RecordingLogger:
        def warning(self, message):
            warnings.append(message)

    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    service = RunRecordService(str(blocker / "run.json"), logger=RecordingLogger())

    service.finalize("failed", error="boom")

    assert len(warnings) == 1
    assert "Could not write run record" in warnings[0]
