# server.py
# Process entry point: config, database, listener (plain TCP or tailnet), serve, graceful stop.
import logging
import signal
import socket
import sys
import threading
from typing import Optional, Sequence

from werkzeug.serving import ThreadedWSGIServer, WSGIRequestHandler

from config import STARTUP_PING_TIMEOUT, SHUTDOWN_GRACE, ServerConfig, load_config
from db.postgres_client import Database
from errors import StartupError
from identity import IdentityResolver
from main import Services, create_app
from tailnet import LocalClient, ManagedNode

LOG = logging.getLogger(__name__)


class OneShotRequestHandler(WSGIRequestHandler):
    # no keep-alive: an open connection is always a request in progress
    protocol_version = "HTTP/1.0"


class DrainingWSGIServer(ThreadedWSGIServer):
    """Threaded werkzeug server that tracks every accepted connection until it is closed.

    A connection counts from accept, so a request still being read when
    shutdown starts is waited for like one already inside the app.
    """

    def __init__(self, *args, **kwargs):
        self._open = set()
        self._cond = threading.Condition()
        super().__init__(*args, **kwargs)

    @property
    def active(self) -> int:
        with self._cond:
            return len(self._open)

    def process_request(self, request, client_address):
        with self._cond:
            self._open.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request):
        # socketserver calls this for every accepted request, including failed hand-offs
        try:
            super().shutdown_request(request)
        finally:
            with self._cond:
                self._open.discard(request)
                if not self._open:
                    self._cond.notify_all()

    def wait_idle(self, timeout: float) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: not self._open, timeout=timeout)


class StandardListener:
    """Plain TCP on every interface; identity lookups go to the host's tailscaled, if any."""
    embedded = False

    def __init__(self, port: int, client: Optional[LocalClient] = None):
        self.port = port
        self._client = client or LocalClient()

    def open(self) -> socket.socket:
        try:
            if socket.has_dualstack_ipv6():
                return socket.create_server(("", self.port), family=socket.AF_INET6,
                                            dualstack_ipv6=True)
            return socket.create_server(("", self.port))
        except OSError as e:
            raise StartupError(f"Failed to listen on :{self.port}: {e}") from e

    def client(self) -> LocalClient:
        return self._client

    def describe(self) -> str:
        return f"regular HTTP mode on port {self.port}"

    def close(self) -> None:
        pass


class EmbeddedListener:
    """Joins the tailnet with a node owned by this process and listens only there."""
    embedded = True

    def __init__(self, hostname: str, authkey: str, state_dir: str, port: int,
                 node: Optional[ManagedNode] = None):
        self.hostname = hostname
        self.port = port
        self.node = node or ManagedNode(hostname, authkey, state_dir)

    def open(self) -> socket.socket:
        self.node.start()
        return self.node.listen(self.port)

    def client(self) -> LocalClient:
        return self.node.local_client()

    def describe(self) -> str:
        return f"embedded tailnet mode with hostname: {self.hostname}"

    def close(self) -> None:
        self.node.close()


def listener_for(config: ServerConfig):
    if config.embedded:
        return EmbeddedListener(config.ts_hostname, config.ts_authkey,
                                config.ts_state_dir, config.port)
    return StandardListener(config.port)


def serve(app, sock: socket.socket, grace: float = SHUTDOWN_GRACE,
          stop: Optional[threading.Event] = None) -> bool:
    """Serve `app` on an already listening socket until `stop` is set.

    Without an explicit event, SIGINT and SIGTERM set it. On stop, new
    connections are refused and in-flight requests get `grace` seconds.
    Returns False when requests were still running at the deadline.
    """
    if stop is None:
        stop = threading.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda signum, frame: stop.set())

    host, port = sock.getsockname()[:2]
    # werkzeug duplicates the descriptor, so our copy is closed right away
    server = DrainingWSGIServer(host, port, app, handler=OneShotRequestHandler, fd=sock.fileno())
    sock.close()

    thread = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
    thread.start()
    LOG.info("Server listening on %s:%s", host, server.server_address[1])

    stop.wait()
    LOG.info("Shutting down server...")
    server.shutdown()
    drained = server.wait_idle(grace)
    if not drained:
        LOG.warning("Server forced to shutdown: %d connections still open", server.active)
    server.server_close()
    thread.join(timeout=1)
    LOG.info("Server exited")
    return drained


def run(argv: Optional[Sequence[str]] = None) -> int:
    config = load_config(argv)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = Database(config.conninfo)
    db.open()
    if db.ping(timeout=STARTUP_PING_TIMEOUT):
        LOG.info("Successfully connected to database")
    else:
        LOG.warning("Failed to ping database at %s:%s", config.db_host, config.db_port)

    listener = listener_for(config)
    LOG.info("Starting in %s", listener.describe())
    try:
        try:
            sock = listener.open()
        except StartupError as e:
            LOG.critical("%s", e)
            return 1
        resolver = IdentityResolver(listener.client(), embedded=listener.embedded)
        app = create_app(Services(db=db, network=listener.client(),
                                  resolver=resolver, static_dir=config.static_dir))
        serve(app, sock)
    finally:
        listener.close()
        db.close()
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
