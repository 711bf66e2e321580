from datetime import datetime, timedelta

import pytest

from conftest import FakeCommandRunner
from endpointremediator.errors import ActionFailed
from endpointremediator.services.event_log import EventLogService, parse_events

EVENTS_XML = """
<Event xmlns='http://schemas.microsoft.com/win/2004/08/events/event'>
  <System>
    <Provider Name='Application Error'/>
    <EventID Qualifiers='0'>1000</EventID>
    <Level>2</Level>
    <TimeCreated SystemTime='2024-03-05T10:15:30.1234567Z'/>
  </System>
  <EventData>
    <Data>OUTLOOK.EXE</Data>
    <Data>16.0.17328.20184</Data>
  </EventData>
</Event>
<Event xmlns='http://schemas.microsoft.com/win/2004/08/events/event'>
  <System>
    <Provider Name='MsiInstaller'/>
    <EventID>11707</EventID>
    <Level>4</Level>
    <TimeCreated SystemTime='2024-03-05T11:00:00.0000000Z'/>
  </System>
  <EventData><Data>Product: Agent -- Installation completed successfully.</Data></EventData>
</Event>
"""


def test_parse_events_reads_system_fields():
    events = parse_events(EVENTS_XML, "Application")

    assert len(events) == 2
    assert events[0].provider == "Application Error"
    assert events[0].event_id == 1000
    assert events[0].level == 2
    assert events[0].message == "OUTLOOK.EXE 16.0.17328.20184"
    assert events[0].created.year == 2024
    assert events[0].created.microsecond == 123456


def test_parse_events_empty_output():
    assert parse_events("  \n", "Application") == []


def test_parse_events_rejects_garbage():
    with pytest.raises(ActionFailed) as excinfo:
        parse_events("<Event>", "Application")

    assert excinfo.value.code == "event_log_query_failed"


def test_query_builds_wevtutil_command_and_filters():
    runner = FakeCommandRunner(stdout=EVENTS_XML)
    service = EventLogService(runner, max_events=50)

    events = service.query(
        "Application",
        datetime.now() - timedelta(hours=1),
        predicate=lambda event: event.provider == "MsiInstaller",
    )

    assert [event.event_id for event in events] == [11707]
    command = runner.calls[0]
    assert command[:3] == ["wevtutil.exe", "qe", "Application"]
    assert command[3].startswith("/q:*[System[TimeCreated[timediff(@SystemTime) <= ")
    assert "/c:50" in command


def test_query_failure_raises():
    runner = FakeCommandRunner(returncode=15007, stderr="The specified channel could not be found.")

    with pytest.raises(ActionFailed, match="channel could not be found"):
        EventLogService(runner).query("Nope", datetime.now())
