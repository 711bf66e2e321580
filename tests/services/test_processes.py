import pytest

from conftest import FakeCommandRunner
from endpointremediator.errors import ActionFailed
from endpointremediator.services.processes import ProcessControl

TASKLIST = (
    '"System Idle Process","0","Services","0","8 K"\n'
    '"OUTLOOK.EXE","4242","Console","1","312,044 K"\n'
    '"OneDrive.exe","5120","Console","1","98,120 K"\n'
)


def test_is_running_is_case_insensitive():
    control = ProcessControl(FakeCommandRunner(stdout=TASKLIST))

    assert control.is_running("outlook.exe") is True
    assert control.is_running("onedrive.EXE") is True
    assert control.is_running("teams.exe") is False


def test_list_ignores_info_line():
    control = ProcessControl(FakeCommandRunner(stdout="INFO: No tasks are running which match the specified criteria.\n"))

    assert control.list() == []


def test_stop_uses_taskkill_tree_force():
    runner = FakeCommandRunner()

    ProcessControl(runner).stop("OneDrive.exe")

    assert runner.calls == [["taskkill.exe", "/IM", "OneDrive.exe", "/F", "/T"]]


def test_stop_failure_raises_with_code():
    runner = FakeCommandRunner(returncode=128, stderr="ERROR: The process could not be terminated.")

    with pytest.raises(ActionFailed, match="could not be terminated") as excinfo:
        ProcessControl(runner).stop("OUTLOOK.EXE")

    assert excinfo.value.code == "process_stop_failed"
