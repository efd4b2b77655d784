"""Summarize this year's Google Calendar events by total time spent."""

__version__ = "0.1.0"
