import enum
import logging
import threading
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol

from calsum.errors import CalsumError, DataQualityWarning, SummarizeCancelled, TransportError

MAX_RESULTS = 30

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventRecord:
    label: str
    start: Optional[datetime]
    end: Optional[datetime]


@dataclass
class EventPage:
    records: List[EventRecord] = field(default_factory=list)
    next_page_token: str = ""


@dataclass(frozen=True)
class Window:
    time_min: datetime
    time_max: datetime


@dataclass(frozen=True)
class RankedEntry:
    label: str
    duration: timedelta


Report = List[RankedEntry]


class EventSource(Protocol):
    def list_events(
        self, time_min: datetime, time_max: datetime, page_token: str
    ) -> EventPage: ...


class FetchState(enum.Enum):
    FETCHING = "fetching"
    DONE = "done"


class DurationAccumulator:
    """Total duration per label. Adding to an existing label sums, never replaces."""

    def __init__(self):
        self._totals: Dict[str, timedelta] = {}

    def add(self, label: str, duration: timedelta) -> None:
        if duration < timedelta(0):
            raise ValueError(f"negative duration for {label!r}: {duration}")
        self._totals[label] = self._totals.get(label, timedelta(0)) + duration

    def __len__(self) -> int:
        return len(self._totals)

    def items(self):
        return self._totals.items()


def this_year_window(now: Optional[datetime] = None) -> Window:
    """
    January 1st 00:00 local time of the current year through now.
    """
    if now is None:
        now = datetime.now().astimezone()
    elif now.tzinfo is None:
        now = now.astimezone()
    # RFC3339 at whole seconds
    now = now.replace(microsecond=0)
    # Offset for Jan 1 can differ from today's under DST
    time_min = datetime(now.year, 1, 1).astimezone()
    return Window(time_min=time_min, time_max=now)


def accumulate(acc: DurationAccumulator, records: List[EventRecord]) -> None:
    for record in records:
        if record.start is None or record.end is None:
            logger.debug(f"Skipping undated event {record.label!r}")
            continue
        duration = record.end - record.start
        if duration < timedelta(0):
            warnings.warn(
                f"Skipping event {record.label!r}: ends {record.end.isoformat()} "
                f"before it starts {record.start.isoformat()}",
                DataQualityWarning,
                stacklevel=2,
            )
            continue
        acc.add(record.label, duration)


def rank(acc: DurationAccumulator, limit: int = MAX_RESULTS) -> Report:
    """
    Entries sorted by duration descending, then label ascending, cut to `limit`.
    """
    results = [RankedEntry(label, duration) for label, duration in acc.items()]
    results.sort(key=lambda r: (-r.duration, r.label))
    return results[:limit]


def summarize(
    window: Window,
    event_source: EventSource,
    cancel_event: Optional[threading.Event] = None,
    log: Optional[logging.Logger] = None,
) -> Report:
    """
    Fetch every page of events in `window`, total durations per label and
    return the top MAX_RESULTS entries.

    Raises TransportError if any page fails and SummarizeCancelled if
    `cancel_event` is set between page fetches. Nothing is returned for the
    pages read before either happens.
    """
    log = log or logger
    acc = DurationAccumulator()
    page_token = ""
    state = FetchState.FETCHING

    while state is FetchState.FETCHING:
        if cancel_event is not None and cancel_event.is_set():
            raise SummarizeCancelled("interrupted while fetching events")

        log.info(f"Requesting events page_token={page_token!r}")
        try:
            page = event_source.list_events(window.time_min, window.time_max, page_token)
        except CalsumError:
            raise
        except Exception as e:
            raise TransportError(f"retrieve the user's events: {e}") from e
        log.info(
            f"Retrieved events total={len(page.records)} "
            f"next_page_token={page.next_page_token!r}"
        )

        accumulate(acc, page.records)

        if page.next_page_token:
            page_token = page.next_page_token
        else:
            state = FetchState.DONE

    log.info(f"Collected results total={len(acc)}")
    report = rank(acc)
    if len(acc) > len(report):
        log.info(f"Truncating results total={len(report)}")
    return report


def format_duration(td: timedelta) -> str:
    """Render like "123h45m0s"; sub-hour values drop the hours, zero is "0s"."""
    if td == timedelta(0):
        return "0s"
    total_seconds = td.days * 86400 + td.seconds
    hours, rem = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    if td.microseconds:
        secs = f"{seconds + td.microseconds / 1_000_000:.6f}".rstrip("0")
    else:
        secs = str(seconds)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def render_report(report: Report) -> str:
    return "\n".join(
        f"{i}. {entry.label}: {format_duration(entry.duration)}"
        for i, entry in enumerate(report, start=1)
    )
