class CountdownError(Exception):
    """Base class for every error raised by the countdown service."""
    pass


class ConfigError(CountdownError):
    """Exception raised when the configuration is missing or malformed. Fatal at startup."""
    pass


class NetworkNotFoundError(CountdownError):
    """Exception raised when a requested network name matches no configured network."""

    def __init__(self, name):
        self.name = name
        super().__init__(f"network '{name}' not found")


class UpstreamError(CountdownError):
    """Exception raised when the RPC node is unreachable, times out or returns an unparsable response."""

    def __init__(self, message, network=None):
        self.network = network
        super().__init__(message)


class InsufficientRangeError(CountdownError):
    """Exception raised when two block samples do not span a positive number of blocks."""

    def __init__(self, earlier_height, later_height):
        self.earlier_height = earlier_height
        self.later_height = later_height
        super().__init__(
            f"cannot estimate block rate between heights {earlier_height} and {later_height}"
        )
