"""
Custom Exception Classes for the Wattline Controller

Hierarchical exception structure for error handling across services.
"""


class WattlineError(Exception):
    """Base exception for all Wattline controller errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(WattlineError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(f"Config Error: {message}", recoverable)


class RegisterDecodeError(ConfigError):
    """Raw register words cannot be decoded with the given register spec"""

    def __init__(
        self,
        message: str,
        length: int | None = None,
        raw: list[int] | None = None,
    ):
        self.length = length
        self.raw = raw
        super().__init__(f"Decode: {message}")


class DeviceError(WattlineError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        device_id: int | str | None = None,
        device_name: str | None = None,
        recoverable: bool = True,
    ):
        self.device_id = device_id
        self.device_name = device_name
        super().__init__(f"Device Error: {message}", recoverable)


class CommunicationError(DeviceError):
    """Serial link errors (port closed, connection dropped)"""

    def __init__(
        self,
        message: str,
        device_id: int | str | None = None,
        device_name: str | None = None,
        port: str | None = None,
    ):
        self.port = port
        super().__init__(message, device_id, device_name, recoverable=True)


class PersistenceError(WattlineError):
    """History file read/write errors"""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"Persistence Error: {message}", recoverable=True)
