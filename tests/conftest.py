import io
import subprocess

import pytest
from rich.console import Console

from endpointremediator.errors import ActionFailed
from endpointremediator.services.filesystem import FileSystemService
from endpointremediator.services.session_log import SessionLogger
from endpointremediator.services.toolbox import Toolbox


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


class FakeProcesses:
    def __init__(self, running=(), unkillable=()):
        self.running = {name.lower() for name in running}
        self.unkillable = {name.lower() for name in unkillable}
        self.stopped = []

    def is_running(self, name):
        return name.lower() in self.running

    def stop(self, name):
        if name.lower() in self.unkillable:
            raise ActionFailed(f"taskkill exited with 128 for {name}", code="process_stop_failed")
        self.stopped.append(name)
        self.running.discard(name.lower())


class FakeRegistry:
    def __init__(self, keys=None):
        self.keys = {key.lower(): dict(values) for key, values in (keys or {}).items()}
        self.calls = []

    def key_exists(self, key):
        return key.lower() in self.keys

    def value_exists(self, key, value_name):
        return value_name in self.keys.get(key.lower(), {})

    def get(self, key, value_name, default=None):
        return self.keys.get(key.lower(), {}).get(value_name, default)

    def set(self, key, value_name, value_type, data):
        self.calls.append(("set", key, value_name))
        self.keys.setdefault(key.lower(), {})[value_name] = data

    def delete(self, key, value_name=None):
        self.calls.append(("delete", key, value_name))
        if value_name is None:
            prefix = key.lower()
            for existing in list(self.keys):
                if existing == prefix or existing.startswith(prefix + "\\"):
                    del self.keys[existing]
        else:
            self.keys.get(key.lower(), {}).pop(value_name, None)


class FakeServices:
    def __init__(self, statuses=None, start_types=None, stuck=()):
        self.statuses = dict(statuses or {})
        self.start_types = dict(start_types or {})
        self.stuck = set(stuck)
        self.started = []

    def status(self, name):
        return self.statuses.get(name)

    def startup_type(self, name):
        return self.start_types.get(name)

    def set_startup_type(self, name, start_type):
        self.start_types[name] = start_type

    def start(self, name):
        self.started.append(name)
        if name not in self.stuck:
            self.statuses[name] = "RUNNING"

    def wait_for_status(self, name, desired="RUNNING", timeout=30, interval=1.0):
        return self.statuses.get(name) == desired


class FakeInstaller:
    def __init__(self, exit_code=0):
        self.exit_code = exit_code
        self.calls = []

    def execute(self, cmd, wait=True):
        self.calls.append((list(cmd), wait))
        return None if wait is False else self.exit_code

    def install(self, path, arguments=(), wait=True):
        return self.execute([path] + list(arguments), wait=wait)

    def uninstall(self, product_code, arguments=(), wait=True):
        return self.execute(["msiexec.exe", "/x", product_code] + list(arguments), wait=wait)


class FakeEventLog:
    def __init__(self, events=()):
        self.events = list(events)
        self.queries = []

    def query(self, log_name, since, predicate=None):
        self.queries.append((log_name, since))
        return [event for event in self.events if predicate is None or predicate(event)]


class FakeDownloads:
    def __init__(self):
        self.fetched = []

    def fetch(self, location, staging_dir, expected_sha256=None):
        self.fetched.append(location)
        return location


class FakeCommandRunner:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def run(self, cmd, check=True, capture_output=False, **_kwargs):
        self.calls.append(list(cmd))
        if check and self.returncode != 0:
            raise ActionFailed(f"Command failed ({self.returncode}): {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def quiet_console():
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def session_logger(tmp_path, quiet_console):
    logger = SessionLogger(str(tmp_path / "logs" / "session.log"), console=quiet_console)
    yield logger
    logger.close()


@pytest.fixture
def make_toolbox(tmp_path):
    def _make(admin=True, filesystem=None, **facilities):
        return Toolbox(
            processes=facilities.get("processes", FakeProcesses()),
            registry=facilities.get("registry", FakeRegistry()),
            services=facilities.get("services", FakeServices()),
            installer=facilities.get("installer", FakeInstaller()),
            event_log=facilities.get("event_log", FakeEventLog()),
            filesystem=filesystem or FileSystemService(logger=DummyLogger()),
            downloads=facilities.get("downloads", FakeDownloads()),
            command_runner=facilities.get("command_runner", FakeCommandRunner()),
            is_admin=lambda: admin,
            staging_dir=str(tmp_path / "staging"),
        )

    return _make
