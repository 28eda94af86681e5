"""Domain-specific errors for boardlink."""


class BoardlinkError(Exception):
    """Base error for boardlink."""


class SettingsError(BoardlinkError):
    """Base settings error."""


class SettingsValidationError(SettingsError):
    """Raised when a settings file does not conform to schema or semantics."""


class SettingsLoadError(SettingsError):
    """Raised when reading settings sources fails."""


class MethodNotFoundError(BoardlinkError):
    """Raised when an RPC call names a method the session does not serve."""


class InvalidStateError(BoardlinkError):
    """Raised on an illegal session state transition."""


class DiscoveryError(BoardlinkError):
    """Base discovery error."""


class InvalidFilterError(DiscoveryError):
    """Raised when a discovery request carries no usable pnpid filter."""


class SessionConnectError(BoardlinkError):
    """Base connection error."""


class AlreadyConnectedError(SessionConnectError, DiscoveryError):
    """Raised when discover/connect is requested while a port is open."""


class UnknownPeripheralError(SessionConnectError):
    """Raised when connect names a peripheral missing from the registry."""


class OpenFailedError(SessionConnectError):
    """Raised when the OS refuses to open the serial port."""


class NotConnectedError(SessionConnectError):
    """Raised when an operation needs an open port and there is none."""


class PortIOError(BoardlinkError):
    """Base port I/O error."""


class WriteFailedError(PortIOError):
    """Raised on OS-level write or drain failures."""


class ReadFailedError(PortIOError):
    """Raised on OS-level read failures."""


class SessionClosingError(PortIOError):
    """Raised when a write arrives while the port is being torn down."""


class InvalidEncodingError(PortIOError):
    """Raised when a message cannot be decoded with the requested encoding."""


class SubprocessError(BoardlinkError):
    """Base error for external tool invocations."""


class SubprocessLaunchError(SubprocessError):
    """Raised when an external tool cannot be started."""


class SubprocessTimeoutError(SubprocessError):
    """Raised when an external tool exceeds its time budget and is killed."""


class UploadError(BoardlinkError):
    """Base upload pipeline error."""


class UnsupportedBoardError(UploadError):
    """Raised when no uploader is registered for a board type."""


class UploadBuildError(UploadError):
    """Raised when compiling user code fails."""


class UploadFlashError(UploadError):
    """Raised when writing code or firmware to the board fails.

    `unplug` marks failures that leave the device in an indeterminate state;
    the session does not try to reconnect after those.
    """

    def __init__(self, message: str, *, unplug: bool = False) -> None:
        super().__init__(message)
        self.unplug = unplug


class FirmwareProbeFailure(UploadError):
    """Raised when the board cannot enter its raw REPL; triggers a reflash."""
