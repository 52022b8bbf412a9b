# tailnet.py
"""
Access to Tailscale from inside the app.

Two pieces:
  - LocalClient: status and whois lookups against a tailscaled LocalAPI, via
    the `tailscale` CLI with `--json` output. With no socket path it talks to
    the host's system daemon.
  - ManagedNode: a private tailscaled owned by this process (own state dir and
    socket), brought up with an auth key so the app joins the tailnet under its
    own hostname and can listen on its tailnet address.

Every CLI call is bounded by a timeout; failures surface as NetworkClientError
(lookups) or StartupError (node start).
"""

import json
import logging
import os
import socket
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import NETWORK_CALL_TIMEOUT
from errors import NetworkClientError, StartupError

LOG = logging.getLogger(__name__)

BACKEND_RUNNING = "Running"

TAILSCALE_BIN = os.getenv("TAILSCALE_BIN", "tailscale")
TAILSCALED_BIN = os.getenv("TAILSCALED_BIN", "tailscaled")


@dataclass
class NodeStatus:
    backend_state: str
    tailscale_ips: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "NodeStatus":
        ips = data.get("TailscaleIPs") or (data.get("Self") or {}).get("TailscaleIPs") or []
        return cls(backend_state=str(data.get("BackendState", "")), tailscale_ips=list(ips))


@dataclass
class WhoIsResult:
    login_name: str = ""
    display_name: str = ""
    tagged: bool = False

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "WhoIsResult":
        node = data.get("Node") or {}
        profile = data.get("UserProfile") or {}
        return cls(
            login_name=profile.get("LoginName", "") or "",
            display_name=profile.get("DisplayName", "") or "",
            tagged=bool(node.get("Tags")),
        )


class LocalClient:
    def __init__(self, socket_path: Optional[str] = None,
                 timeout: float = NETWORK_CALL_TIMEOUT, binary: str = TAILSCALE_BIN):
        self.socket_path = socket_path
        self.timeout = timeout
        self.binary = binary

    def _command(self, *args: str) -> List[str]:
        cmd = [self.binary]
        if self.socket_path:
            cmd.append(f"--socket={self.socket_path}")
        cmd.extend(args)
        return cmd

    def _run_json(self, *args: str) -> Dict[str, Any]:
        cmd = self._command(*args)
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True,
                                  timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            raise NetworkClientError(f"{self.binary} not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise NetworkClientError(f"{' '.join(args)} timed out after {self.timeout}s") from e
        if proc.returncode != 0:
            msg = (proc.stderr or proc.stdout).strip() or f"exit status {proc.returncode}"
            raise NetworkClientError(msg)
        try:
            return json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise NetworkClientError(f"invalid JSON from {self.binary}: {e}") from e

    def status(self) -> NodeStatus:
        return NodeStatus.from_json(self._run_json("status", "--json"))

    def whois(self, remote_addr: str) -> WhoIsResult:
        if not remote_addr:
            raise NetworkClientError("no remote address to look up")
        return WhoIsResult.from_json(self._run_json("whois", "--json", remote_addr))


class ManagedNode:
    """A tailscaled instance started and owned by this process."""

    def __init__(self, hostname: str, authkey: str, state_dir: str,
                 tun: str = "tsdemo0", start_timeout: float = 60.0,
                 tailscaled_bin: str = TAILSCALED_BIN, tailscale_bin: str = TAILSCALE_BIN):
        self.hostname = hostname
        self.authkey = authkey
        self.state_dir = os.path.abspath(state_dir)
        self.socket_path = os.path.join(self.state_dir, "tailscaled.sock")
        self.tun = tun
        self.start_timeout = start_timeout
        self.tailscaled_bin = tailscaled_bin
        self.tailscale_bin = tailscale_bin
        self.status: Optional[NodeStatus] = None
        self._proc: Optional[subprocess.Popen] = None
        self._client: Optional[LocalClient] = None

    def start(self) -> NodeStatus:
        os.makedirs(self.state_dir, exist_ok=True)
        cmd = [
            self.tailscaled_bin,
            f"--statedir={self.state_dir}",
            f"--socket={self.socket_path}",
            f"--tun={self.tun}",
            "--port=0",
        ]
        LOG.info("starting tailscaled for %s (state %s)", self.hostname, self.state_dir)
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.PIPE,
                                          stderr=subprocess.STDOUT, text=True)
        except OSError as e:
            raise StartupError(f"Failed to start tailscaled: {e}") from e
        threading.Thread(target=self._pump_logs, name="tailscaled-log", daemon=True).start()

        deadline = time.monotonic() + self.start_timeout
        self._wait_for_socket(deadline)
        self._up(deadline)
        self.status = self._wait_running(deadline)
        self._client = LocalClient(socket_path=self.socket_path, binary=self.tailscale_bin)
        LOG.info("Tailscale node started successfully: %s", ", ".join(self.status.tailscale_ips))
        return self.status

    def _pump_logs(self) -> None:
        proc = self._proc
        if proc is None or proc.stdout is None:
            return
        for line in proc.stdout:
            LOG.info("tailscaled: %s", line.rstrip())

    def _check_alive(self) -> None:
        if self._proc is not None and self._proc.poll() is not None:
            raise StartupError(f"tailscaled exited with status {self._proc.returncode}")

    def _wait_for_socket(self, deadline: float) -> None:
        while not os.path.exists(self.socket_path):
            self._check_alive()
            if time.monotonic() > deadline:
                raise StartupError(f"tailscaled socket {self.socket_path} did not appear")
            time.sleep(0.2)

    def _up(self, deadline: float) -> None:
        remaining = max(1, int(deadline - time.monotonic()))
        cmd = [
            self.tailscale_bin, f"--socket={self.socket_path}", "up",
            f"--authkey={self.authkey}", f"--hostname={self.hostname}",
            f"--timeout={remaining}s",
        ]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True,
                                  timeout=remaining + 5, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise StartupError(f"tailscale up failed: {e}") from e
        if proc.returncode != 0:
            raise StartupError(f"tailscale up failed: {(proc.stderr or proc.stdout).strip()}")

    def _wait_running(self, deadline: float) -> NodeStatus:
        client = LocalClient(socket_path=self.socket_path, binary=self.tailscale_bin)
        last = ""
        while time.monotonic() <= deadline:
            self._check_alive()
            try:
                status = client.status()
            except NetworkClientError as e:
                last = str(e)
            else:
                if status.backend_state == BACKEND_RUNNING and status.tailscale_ips:
                    return status
                last = status.backend_state
            time.sleep(0.5)
        raise StartupError(f"tailnet node not running before timeout (last state: {last})")

    def local_client(self) -> LocalClient:
        if self._client is None:
            raise StartupError("Failed to get LocalClient: node not started")
        return self._client

    def listen(self, port: int) -> socket.socket:
        """Listening TCP socket on the node's tailnet address, IPv4 preferred."""
        if self.status is None or not self.status.tailscale_ips:
            raise StartupError("node has no tailnet address")
        ips = self.status.tailscale_ips
        addr = next((ip for ip in ips if "." in ip), ips[0])
        family = socket.AF_INET if "." in addr else socket.AF_INET6
        try:
            return socket.create_server((addr, port), family=family)
        except OSError as e:
            raise StartupError(f"Failed to listen on {addr}:{port}: {e}") from e

    def close(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            LOG.warning("tailscaled did not exit, killing it")
            proc.kill()
            proc.wait()
