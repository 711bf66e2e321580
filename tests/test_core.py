import json
from pathlib import Path

import pytest

from conftest import FakeCommandRunner, FakeInstaller, FakeServices
from endpointremediator.constants import EXIT_ABORTED, EXIT_CANCELLED, EXIT_INSUFFICIENT_PRIVILEGE, EXIT_OK
from endpointremediator.core import EndpointRemediator
from endpointremediator.errors import RemediationError
from endpointremediator.models import RunConfiguration


def build_remediator(tmp_path, toolbox, quiet_console, recipe="agent-service", plan=None, **config):
    config.setdefault("log_dir", str(tmp_path / "logs"))
    config.setdefault("recipe_options", {"services": ["BITS", "CcmExec"]})
    return EndpointRemediator(
        config=RunConfiguration(**config),
        recipe=recipe,
        plan=plan,
        report_file=str(tmp_path / "run-record.json"),
        console=quiet_console,
        toolbox=toolbox,
    )


def read_record(tmp_path):
    return json.loads((tmp_path / "run-record.json").read_text(encoding="utf-8"))


def test_completed_run_exits_zero_and_writes_log(tmp_path, make_toolbox, quiet_console):
    services = FakeServices(statuses={"BITS": "RUNNING", "CcmExec": "STOPPED"}, start_types={"BITS": "auto"})
    remediator = build_remediator(tmp_path, make_toolbox(services=services), quiet_console)

    assert remediator.run() == EXIT_OK

    log_path = Path(remediator.log_path)
    assert log_path.parent == tmp_path / "logs"
    assert log_path.name.startswith("endpointremediator-agent-service-")
    log_text = log_path.read_text(encoding="utf-8")
    assert "[SUCCESS] start-ccmexec: Service CcmExec is running" in log_text
    assert "start-bits: Not needed" in log_text
    record = read_record(tmp_path)
    assert record["status"] == "completed"
    assert record["recipe"] == "agent-service"
    assert record["log_file"] == remediator.log_path
    assert services.started == ["CcmExec"]


def test_non_critical_failure_still_exits_zero(tmp_path, make_toolbox, quiet_console):
    services = FakeServices(statuses={"BITS": "STOPPED", "CcmExec": "STOPPED"}, stuck={"BITS"})
    remediator = build_remediator(tmp_path, make_toolbox(services=services), quiet_console)

    assert remediator.run() == EXIT_OK
    assert read_record(tmp_path)["summary"]["counts"]["failed"] == 1


def test_critical_failure_exits_one(tmp_path, make_toolbox, quiet_console):
    services = FakeServices(statuses={"BITS": "STOPPED", "CcmExec": "STOPPED"}, stuck={"CcmExec"})
    remediator = build_remediator(tmp_path, make_toolbox(services=services), quiet_console)

    assert remediator.run() == EXIT_ABORTED
    record = read_record(tmp_path)
    assert record["status"] == "aborted"
    assert "start-ccmexec" in record["error"]


def test_missing_privilege_exits_three_with_single_record(tmp_path, make_toolbox, quiet_console):
    services = FakeServices(statuses={"BITS": "STOPPED", "CcmExec": "STOPPED"})
    remediator = build_remediator(tmp_path, make_toolbox(admin=False, services=services), quiet_console)

    assert remediator.run() == EXIT_INSUFFICIENT_PRIVILEGE

    lines = Path(remediator.log_path).read_text(encoding="utf-8").splitlines()
    assert len([line for line in lines if "InsufficientPrivilege" in line]) == 1
    assert services.started == []
    assert read_record(tmp_path)["status"] == "insufficient_privilege"


def test_dry_run_without_privilege_reports_only(tmp_path, make_toolbox, quiet_console):
    services = FakeServices(statuses={"BITS": "STOPPED", "CcmExec": "STOPPED"})
    remediator = build_remediator(tmp_path, make_toolbox(admin=False, services=services), quiet_console, dry_run=True)

    assert remediator.run() == EXIT_OK
    assert services.started == []
    record = read_record(tmp_path)
    assert record["dry_run"] is True
    assert [step["outcome"] for step in record["steps"]] == ["dry-run", "dry-run"]


def test_keyboard_interrupt_exits_130(tmp_path, make_toolbox, quiet_console, monkeypatch):
    remediator = build_remediator(tmp_path, make_toolbox(), quiet_console)

    def interrupted(_self):
        raise KeyboardInterrupt

    monkeypatch.setattr(EndpointRemediator, "load_steps", interrupted)

    assert remediator.run() == EXIT_CANCELLED
    assert read_record(tmp_path)["status"] == "cancelled"


def test_plan_run_uses_plan_name_and_reports_restart(tmp_path, make_toolbox, quiet_console):
    plan_file = tmp_path / "relaunch.yml"
    plan_file.write_text(
        "steps:\n"
        "  - name: relaunch-agent\n"
        "    action: {type: run_program, command: [agent.exe], wait: false}\n"
        "  - name: schedule-restart\n"
        "    action: {type: restart_computer, delay_seconds: 30}\n",
        encoding="utf-8",
    )
    runner = FakeCommandRunner()
    installer = FakeInstaller()
    remediator = build_remediator(
        tmp_path,
        make_toolbox(command_runner=runner, installer=installer),
        quiet_console,
        recipe=None,
        plan=str(plan_file),
    )

    assert remediator.run() == EXIT_OK
    assert Path(remediator.log_path).name.startswith("endpointremediator-relaunch-")
    assert installer.calls == [(["agent.exe"], False)]
    assert runner.calls[0][0] == "shutdown.exe"


def test_invalid_plan_exits_one(tmp_path, make_toolbox, quiet_console):
    plan_file = tmp_path / "broken.yml"
    plan_file.write_text("steps: {}\n", encoding="utf-8")
    remediator = build_remediator(tmp_path, make_toolbox(), quiet_console, recipe=None, plan=str(plan_file))

    assert remediator.run() == EXIT_ABORTED
    assert "steps" in read_record(tmp_path)["error"]


@pytest.mark.parametrize(
    ("recipe", "plan", "message"),
    [
        (None, None, "exactly one of --recipe or --plan"),
        ("agent-service", "plan.yml", "exactly one of --recipe or --plan"),
        ("defrag", None, "Unknown recipe"),
    ],
)
def test_constructor_validates_recipe_or_plan(recipe, plan, message):
    with pytest.raises(RemediationError, match=message):
        EndpointRemediator(config=RunConfiguration(), recipe=recipe, plan=plan)


def test_run_id_is_assigned_once(tmp_path, make_toolbox, quiet_console):
    first = build_remediator(tmp_path, make_toolbox(), quiet_console)
    second = build_remediator(tmp_path, make_toolbox(), quiet_console)

    assert first.config.run_id
    assert first.config.run_id != second.config.run_id
