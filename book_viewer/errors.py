"""Exception hierarchy for Book Viewer."""


class BookViewerError(Exception):
    """Base class for all Book Viewer errors."""


class MalformedFrameError(BookViewerError):
    """Inbound frame could not be parsed or failed schema checks."""


class TickerValidationError(BookViewerError):
    """Ticker message carried a required field that is not a finite number."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(f"Invalid ticker field {field!r}: {value!r}")
        self.field = field
        self.value = value


class FeedClosedError(BookViewerError):
    """Operation attempted on a feed connection that has been closed."""
