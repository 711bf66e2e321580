from datetime import datetime

import pytest

from conftest import FakeCommandRunner, FakeEventLog, FakeInstaller, FakeServices
from endpointremediator.errors import ActionFailed
from endpointremediator.models import FolderPolicy, RunConfiguration
from endpointremediator.services.actions import (
    CollectFiles,
    QueryEventLog,
    RestartComputer,
    RetirePaths,
    RunInstaller,
    RunProgram,
    RunUninstaller,
    StartService,
)
from endpointremediator.services.event_log import EventRecord


def _event(provider, message):
    return EventRecord(
        log_name="Application",
        provider=provider,
        event_id=1000,
        level=2,
        created=datetime(2024, 1, 1),
        message=message,
    )


def test_run_installer_reports_reboot_codes(make_toolbox, session_logger):
    installer = FakeInstaller(exit_code=3010)
    toolbox = make_toolbox(installer=installer)

    report = RunInstaller(r"C:\Staging\agent.msi", ("/qn",)).apply(toolbox, RunConfiguration(), session_logger)

    assert report.reboot_required is True
    assert "3010" in report.detail
    assert installer.calls == [([r"C:\Staging\agent.msi", "/qn"], True)]
    assert toolbox.downloads.fetched == [r"C:\Staging\agent.msi"]


def test_run_installer_failure_code_raises(make_toolbox, session_logger):
    toolbox = make_toolbox(installer=FakeInstaller(exit_code=1603))

    with pytest.raises(ActionFailed) as excinfo:
        RunInstaller("setup.exe").apply(toolbox, RunConfiguration(), session_logger)

    assert excinfo.value.code == "installer_failed"
    assert "1603" in str(excinfo.value)


def test_bounded_wait_timeout_is_indeterminate(make_toolbox, session_logger):
    toolbox = make_toolbox(installer=FakeInstaller(exit_code=None))

    report = RunUninstaller("{PRODUCT}", wait=5.0).apply(toolbox, RunConfiguration(), session_logger)

    assert "indeterminate" in report.detail


def test_run_program_without_wait_just_launches(make_toolbox, session_logger):
    installer = FakeInstaller()
    toolbox = make_toolbox(installer=installer)

    report = RunProgram(("explorer.exe",), wait=False).apply(toolbox, RunConfiguration(), session_logger)

    assert report.detail == "Launched explorer.exe without waiting"
    assert installer.calls == [(["explorer.exe"], False)]


def test_start_service_sets_start_type_and_waits(make_toolbox, session_logger):
    services = FakeServices(statuses={"BITS": "STOPPED"}, start_types={"BITS": "demand"})
    toolbox = make_toolbox(services=services)

    StartService("BITS", start_type="auto").apply(toolbox, RunConfiguration(), session_logger)

    assert services.start_types["BITS"] == "auto"
    assert services.started == ["BITS"]


def test_start_service_raises_when_service_never_runs(make_toolbox, session_logger):
    services = FakeServices(statuses={"CcmExec": "STOPPED"}, stuck={"CcmExec"})

    with pytest.raises(ActionFailed, match="did not reach RUNNING"):
        StartService("CcmExec", timeout=1).apply(make_toolbox(services=services), RunConfiguration(), session_logger)


def test_query_event_log_filters_and_logs_matches(make_toolbox, session_logger):
    event_log = FakeEventLog(
        events=[
            _event("Application Error", "Faulting application name: OUTLOOK.EXE"),
            _event("Application Error", "Faulting application name: EXCEL.EXE"),
            _event("MsiInstaller", "OUTLOOK.EXE reconfigured"),
        ]
    )
    action = QueryEventLog("Application", since_hours=24, provider="Application Error", contains="outlook.exe")

    report = action.apply(make_toolbox(event_log=event_log), RunConfiguration(), session_logger)

    assert report.detail == "1 matching event(s) in Application in the last 24 hours"
    assert any("OUTLOOK.EXE" in record.message for record in session_logger.records)


def test_retire_paths_rename_policy_keeps_data(tmp_path, make_toolbox, session_logger):
    outlook_dir = tmp_path / "Outlook"
    outlook_dir.mkdir()
    (outlook_dir / "user@example.com.ost").write_text("ost", encoding="utf-8")
    (outlook_dir / "keep.pst").write_text("pst", encoding="utf-8")

    report = RetirePaths(str(outlook_dir), "*.ost", FolderPolicy.RENAME).apply(
        make_toolbox(), RunConfiguration(), session_logger
    )

    assert report.detail.startswith("Renamed 1 path(s)")
    assert not (outlook_dir / "user@example.com.ost").exists()
    assert len(list(outlook_dir.glob("user@example.com.ost.old-*"))) == 1
    assert (outlook_dir / "keep.pst").exists()


def test_retire_paths_none_policy_is_noop(tmp_path, make_toolbox, session_logger):
    folder = tmp_path / "RoamCache"
    folder.mkdir()

    report = RetirePaths(str(folder), None, FolderPolicy.NONE).apply(make_toolbox(), RunConfiguration(), session_logger)

    assert "Left" in report.detail
    assert folder.exists()


def test_collect_files_copies_matches(tmp_path, make_toolbox, session_logger):
    roam_cache = tmp_path / "RoamCache"
    roam_cache.mkdir()
    (roam_cache / "Stream_Autocomplete_0_ABC.dat").write_text("nk2", encoding="utf-8")
    (roam_cache / "Stream_Calendar_0.dat").write_text("cal", encoding="utf-8")

    report = CollectFiles(str(roam_cache), "Stream_Autocomplete*.dat", str(tmp_path / "backup")).apply(
        make_toolbox(), RunConfiguration(), session_logger
    )

    assert report.detail.startswith("Collected 1 file(s)")
    assert (tmp_path / "backup" / "Stream_Autocomplete_0_ABC.dat").exists()
    assert not (tmp_path / "backup" / "Stream_Calendar_0.dat").exists()


def test_restart_computer_schedules_shutdown(make_toolbox, session_logger):
    runner = FakeCommandRunner()

    RestartComputer(delay_seconds=120).apply(make_toolbox(command_runner=runner), RunConfiguration(), session_logger)

    assert runner.calls[0][:4] == ["shutdown.exe", "/r", "/t", "120"]
