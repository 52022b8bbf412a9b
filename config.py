# config.py
# Process-wide settings. Resolved once at startup from flags, then env, then defaults.
import argparse
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

APP_NAME = "tailscale-demo"
APP_DESCRIPTION = "Tailscale demo application with PostgreSQL integration"

# Timeouts (seconds)
STARTUP_PING_TIMEOUT = 5.0
HEALTH_PING_TIMEOUT = 2.0
PRODUCTS_QUERY_TIMEOUT = 5.0
NETWORK_CALL_TIMEOUT = 5.0
SHUTDOWN_GRACE = 10.0

# Products listing cap
MAX_PRODUCTS = 100

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# (dest, env var, default, help)
_OPTIONS = [
    ("db_host", "DB_HOST", "localhost", "Database host"),
    ("db_port", "DB_PORT", "5432", "Database port"),
    ("db_user", "DB_USER", "postgres", "Database user"),
    ("db_password", "DB_PASSWORD", "postgres", "Database password"),
    ("db_name", "DB_NAME", "demo", "Database name"),
    ("db_sslmode", "DB_SSLMODE", "disable", "Database SSL mode"),
    ("port", "PORT", "8080", "HTTP server port"),
    ("ts_authkey", "TS_AUTHKEY", "", "Tailscale auth key; enables embedded mode"),
    ("ts_hostname", "TS_HOSTNAME", "demo", "Hostname for tailnet registration"),
    ("ts_state_dir", "TS_STATE_DIR", "./tsstate", "State directory of the embedded node"),
    ("static_dir", "STATIC_DIR", "./static", "Directory served at / and /static/"),
    ("log_level", "LOG_LEVEL", "INFO", "Logging level"),
]


@dataclass(frozen=True)
class ServerConfig:
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "demo"
    db_sslmode: str = "disable"
    port: int = 8080
    ts_authkey: str = ""
    ts_hostname: str = "demo"
    ts_state_dir: str = "./tsstate"
    static_dir: str = "./static"
    log_level: str = "INFO"

    @property
    def embedded(self) -> bool:
        """True when an auth key is configured and the app joins the tailnet itself."""
        return bool(self.ts_authkey)

    @property
    def conninfo(self) -> str:
        return (
            f"host={self.db_host} port={self.db_port} user={self.db_user} "
            f"password={self.db_password} dbname={self.db_name} sslmode={self.db_sslmode}"
        )


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _log_level(value: str) -> str:
    level = value.upper()
    if level not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(f"invalid log level: {value!r} (choose from {', '.join(LOG_LEVELS)})")
    return level


_TYPES = {"db_port": _port, "port": _port, "log_level": _log_level}


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description=APP_DESCRIPTION)
    for dest, env, default, help_text in _OPTIONS:
        value = environ.get(env) or default
        shown = "(unset)" if dest in ("db_password", "ts_authkey") else repr(default)
        parser.add_argument(
            "--" + dest.replace("_", "-"),
            dest=dest,
            default=value,
            type=_TYPES.get(dest, str),
            help=f"{help_text} [env {env}, default {shown}]",
        )
    return parser


def load_config(argv: Optional[Sequence[str]] = None,
                environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Parse flags over environment variables over defaults.

    Invalid values exit with a usage message, like any argparse error.
    """
    if environ is None:
        environ = os.environ
    args = build_parser(environ).parse_args(argv)
    values = vars(args)
    # string defaults pass through `type`, so env-supplied ports are validated too
    return ServerConfig(**values)
