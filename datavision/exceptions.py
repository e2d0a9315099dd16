# datavision/exceptions.py


class DataVisionError(Exception):
    """Base class for every failure the analysis pipeline reports to callers."""


class InputFormatError(DataVisionError):
    """Upload rejected before extraction (unsupported extension)."""


class SpreadsheetParseError(DataVisionError):
    """The byte stream is not a decodable workbook."""


class EmptySheetError(DataVisionError):
    """The first sheet yielded zero rows."""


class EmptyResponseError(DataVisionError):
    """The model returned no content for an analysis request."""


class SchemaValidationError(DataVisionError):
    """The structured analysis payload did not match the option shape."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class ChatTransportError(DataVisionError):
    """The streaming exchange could not be established or broke mid-stream."""


class TurnInProgressError(DataVisionError):
    pass


class SessionNotFoundError(DataVisionError):
    pass
