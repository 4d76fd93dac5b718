"""Error types raised by the mise gateway and the manifest helpers."""


class MiseError(Exception):
    """Base class for every failure reported back to the dashboard."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class GatewayError(MiseError):
    """The mise binary could not be started or exited with an error."""


class ParseError(MiseError):
    """mise (or a manifest on disk) produced data we could not parse."""


class FilesystemSkip(Exception):
    """A directory could not be read while scanning; the scan moves on."""
