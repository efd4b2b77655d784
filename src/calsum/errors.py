class CalsumError(Exception):
    """Base class for errors surfaced to the command line."""


class TransportError(CalsumError):
    """A page of events could not be fetched."""


class AuthError(CalsumError):
    """No usable Google credential is available."""


class SummarizeCancelled(CalsumError):
    """The fetch loop was interrupted before all pages were read."""


class DataQualityWarning(UserWarning):
    """An event was left out of the totals because its times are inconsistent."""
