class DeviceUnavailableError(ConnectionError):
    """The device reader lost (or could not open) its session."""


class PublishError(RuntimeError):
    """A notification could not be written to the store; nothing was broadcast."""


class InvalidCursorError(ValueError):
    """A pagination cursor is malformed or was issued for another scope."""


class FeedError(RuntimeError):
    """A feed operation against the notification store failed.

    The feed is left in the state it had before the failing call.
    """
