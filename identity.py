# identity.py
# Who is calling: trusted proxy headers first, then a whois on the local tailnet node.
import logging
from typing import Mapping, Optional

from errors import IdentityUnavailable, NetworkClientError, NoUserIdentity, UnresolvedIdentity
from models import Identity

LOG = logging.getLogger(__name__)

# Set by `tailscale serve` after it has authenticated the caller.
# https://tailscale.com/kb/1312/serve#identity-headers
LOGIN_HEADER = "Tailscale-User-Login"
NAME_HEADER = "Tailscale-User-Name"

NOT_ON_TAILNET = (
    "not accessed via Tailscale - use 'tailscale serve' "
    "or set TS_AUTHKEY to run in embedded mode"
)


class IdentityResolver:
    def __init__(self, client, embedded: bool):
        # client: anything with whois(remote_addr) -> WhoIsResult, e.g. tailnet.LocalClient
        self.client = client
        self.embedded = embedded

    def resolve(self, remote_addr: Optional[str], headers: Mapping[str, str]) -> Identity:
        """Return the caller's Identity or raise an IdentityError subclass."""
        login = headers.get(LOGIN_HEADER)
        if login:
            return Identity(login_name=login, display_name=headers.get(NAME_HEADER) or "")

        try:
            whois = self.client.whois(remote_addr or "")
        except NetworkClientError as e:
            if self.embedded:
                raise IdentityUnavailable(f"failed to identify user via tailnet: {e}",
                                          embedded=True) from e
            raise IdentityUnavailable(NOT_ON_TAILNET, embedded=False) from e

        if whois.tagged:
            raise NoUserIdentity("tagged nodes do not have a user identity")
        if not whois.login_name:
            raise UnresolvedIdentity("failed to identify remote user")
        return Identity(login_name=whois.login_name, display_name=whois.display_name)
