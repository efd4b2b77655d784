import logging
import signal
import sys
import threading
from contextlib import contextmanager

from calsum.config import load_settings
from calsum.errors import AuthError, SummarizeCancelled, TransportError
from calsum.googleapis import GoogleCalendarEventSource, get_events_service
from calsum.summarize import render_report, summarize, this_year_window

logger = logging.getLogger("calsum")


def setup_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # DataQualityWarning goes through warnings.warn
    logging.captureWarnings(True)
    logger.info(f"Logger initialized level={logging.getLevelName(level)}")


@contextmanager
def cancel_on_interrupt(cancel_event: threading.Event):
    """
    First Ctrl-C sets `cancel_event` so the fetch loop stops before the next
    page. A second one raises KeyboardInterrupt right away.
    """

    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received, stopping before the next page (Ctrl-C again to abort)")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous or signal.SIG_DFL)


def run(settings, cancel_event: threading.Event) -> str:
    service = get_events_service(settings)
    source = GoogleCalendarEventSource(service)
    with cancel_on_interrupt(cancel_event):
        report = summarize(this_year_window(), source, cancel_event=cancel_event, log=logger)
    return render_report(report)


def main() -> int:
    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    setup_logging(settings.log_level)

    try:
        output = run(settings, threading.Event())
    except AuthError as e:
        print(
            f"Error: {e}\nDelete {settings.token_path} and run again to re-authenticate.",
            file=sys.stderr,
        )
        return 1
    except TransportError as e:
        print(f"Error: summarize events: {e}", file=sys.stderr)
        return 1
    except SummarizeCancelled as e:
        print(f"Interrupted: {e}", file=sys.stderr)
        return 130
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130

    if output:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
