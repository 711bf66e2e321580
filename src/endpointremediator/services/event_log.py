"""Event log query facility backed by ``wevtutil.exe``."""

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from endpointremediator.errors import ActionFailed

EVENT_NS = {"e": "http://schemas.microsoft.com/win/2004/08/events/event"}


@dataclass(frozen=True)
class EventRecord:
    log_name: str
    provider: str
    event_id: int
    level: int
    created: Optional[datetime]
    message: str


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    cleaned = value.rstrip("Z")
    # wevtutil emits 7 fractional digits, fromisoformat accepts at most 6
    if "." in cleaned:
        head, fraction = cleaned.split(".", 1)
        cleaned = f"{head}.{fraction[:6]}"
    try:
        return datetime.fromisoformat(cleaned).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_events(xml_text: str, log_name: str) -> List[EventRecord]:
    if not xml_text.strip():
        return []
    try:
        root = ET.fromstring(f"<Events>{xml_text}</Events>")
    except ET.ParseError as exc:
        raise ActionFailed(f"Could not parse events from {log_name}: {exc}", code="event_log_query_failed") from exc

    events: List[EventRecord] = []
    for node in root.findall("e:Event", EVENT_NS):
        system = node.find("e:System", EVENT_NS)
        if system is None:
            continue
        provider = system.find("e:Provider", EVENT_NS)
        time_created = system.find("e:TimeCreated", EVENT_NS)
        data = [item.text or "" for item in node.findall("e:EventData/e:Data", EVENT_NS)]
        events.append(
            EventRecord(
                log_name=log_name,
                provider=provider.get("Name", "") if provider is not None else "",
                event_id=int(system.findtext("e:EventID", default="0", namespaces=EVENT_NS) or 0),
                level=int(system.findtext("e:Level", default="0", namespaces=EVENT_NS) or 0),
                created=_parse_time(time_created.get("SystemTime") if time_created is not None else None),
                message=" ".join(part for part in data if part),
            )
        )
    return events


class EventLogService:
    """Queries a Windows event log and filters the events in Python."""

    def __init__(self, command_runner, max_events: int = 500):
        self.command_runner = command_runner
        self.max_events = max_events

    def query(
        self,
        log_name: str,
        since: datetime,
        predicate: Optional[Callable[[EventRecord], bool]] = None,
    ) -> List[EventRecord]:
        if since.tzinfo is None:
            since = since.astimezone(timezone.utc)
        age_ms = max(0, int((datetime.now(timezone.utc) - since).total_seconds() * 1000))
        query = f"*[System[TimeCreated[timediff(@SystemTime) <= {age_ms}]]]"
        result = self.command_runner.run(
            [
                "wevtutil.exe",
                "qe",
                log_name,
                f"/q:{query}",
                "/f:xml",
                f"/c:{self.max_events}",
                "/rd:true",
            ],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            raise ActionFailed(
                f"wevtutil returned {result.returncode} for {log_name}: {(result.stderr or '').strip()}",
                code="event_log_query_failed",
            )
        events = parse_events(result.stdout or "", log_name)
        if predicate is None:
            return events
        return [event for event in events if predicate(event)]
