# errors.py
# Exception types shared by the handlers, the row marshaler and the identity resolver.


class DemoError(Exception):
    """Base class for failures that handlers turn into JSON error bodies."""


# row marshaling / query path
class QueryError(DemoError):
    pass


class ScanError(DemoError):
    pass


class CursorError(DemoError):
    pass


# identity resolution
class IdentityError(DemoError):
    pass


class NoUserIdentity(IdentityError):
    pass


class UnresolvedIdentity(IdentityError):
    pass


class IdentityUnavailable(IdentityError):
    def __init__(self, message: str, embedded: bool):
        super().__init__(message)
        # True: the local node should have answered (genuine fault).
        # False: the caller simply did not arrive over the tailnet.
        self.embedded = embedded


class NetworkClientError(DemoError):
    """A call to the local tailscaled failed or timed out."""


class StartupError(DemoError):
    """Fatal: listener or embedded node could not be started."""
