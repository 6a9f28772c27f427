"""
TopoCrawl - Reachability & Credential Resolver.

Decides whether a host is worth an SSH attempt and which credential
works. Socket and DNS failures are answers (False/None), not exceptions.

Usage:
    resolver = CredentialResolver(credentials, config)

    if resolver.probe("10.0.0.1", 22, timeout=3.0):
        match = resolver.try_credentials("10.0.0.1")
        if match:
            print(f"Logged in as {match.credential.username}")
            match.client.disconnect()
"""

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from ..creds.models import Credential, sort_by_priority
from ..exceptions import NoCredentialsError, SessionConnectionError
from .config import DiscoveryConfig
from .models import is_ip_address
from .ssh.client import SSHClient, SSHClientConfig

logger = logging.getLogger(__name__)

ClientFactory = Callable[[SSHClientConfig], Any]


def probe_port(host: str, port: int = 22, timeout: float = 3.0) -> bool:
    """Raw TCP connect test."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except (socket.timeout, ConnectionRefusedError, socket.gaierror, OSError) as e:
        logger.debug(f"TCP {host}:{port} unreachable: {e}")
        return False


def resolve_hostname(hostname: str) -> Optional[str]:
    """IPv4 address for a name, or None."""
    try:
        return socket.gethostbyname(hostname)
    except (socket.gaierror, socket.herror, UnicodeError, OSError) as e:
        logger.debug(f"DNS lookup for {hostname} failed: {e}")
        return None


def is_resolvable_name(hostname: Optional[str]) -> bool:
    """A real hostname worth a DNS lookup (not a placeholder or an IP)."""
    return bool(hostname) and not hostname.startswith('unknown-') and not is_ip_address(hostname)


@dataclass
class ReachabilityResult:
    """Outcome of is_reachable()."""
    host: str
    reachable: bool
    resolved_address: Optional[str] = None  # Untested DNS answer for names


@dataclass
class CredentialMatch:
    """First credential that produced an authenticated session."""
    credential: Credential
    client: Any
    connected_ip: str


class CredentialResolver:
    """
    Reachability checks and priority-ordered credential attempts.

    client_factory builds the session for each attempt; it defaults to
    SSHClient and is swappable for tests.
    """

    def __init__(
        self,
        credentials: Sequence[Credential],
        config: Optional[DiscoveryConfig] = None,
        client_factory: Optional[ClientFactory] = None,
        output_callback: Optional[Callable[[str], None]] = None,
    ):
        if not credentials:
            raise NoCredentialsError("No credentials configured")
        self.credentials: List[Credential] = sort_by_priority(credentials)
        self.config = config or DiscoveryConfig()
        self.client_factory = client_factory or SSHClient
        self.output_callback = output_callback

    def probe(self, host: str, port: Optional[int] = None,
              timeout: Optional[float] = None) -> bool:
        return probe_port(
            host,
            port or self.config.ssh_port,
            timeout if timeout is not None else self.config.device_probe_timeout,
        )

    def resolve(self, hostname: str) -> Optional[str]:
        return resolve_hostname(hostname)

    def is_reachable(self, host: str, port: Optional[int] = None,
                     timeout: Optional[float] = None) -> ReachabilityResult:
        """
        TCP probe; for names that fail, report the DNS answer untested.
        """
        if self.probe(host, port, timeout):
            return ReachabilityResult(host=host, reachable=True)
        if is_ip_address(host):
            return ReachabilityResult(host=host, reachable=False)
        return ReachabilityResult(host=host, reachable=False,
                                  resolved_address=self.resolve(host))

    def try_credentials(self, host: str,
                        abandoned: Optional[threading.Event] = None) -> Optional[CredentialMatch]:
        """
        Log in with the first credential that works.

        The probe is advisory for literal IPs: SSH is still attempted
        when it fails. Returns None when every credential fails, or once
        the caller sets abandoned; a session opened after that is closed.
        """
        reachable = self.probe(host, self.config.ssh_port, self.config.socket_check_timeout)
        if not reachable and not is_ip_address(host):
            logger.info(f"{host} not reachable on port {self.config.ssh_port}")
            return None
        if not reachable:
            logger.debug(f"{host} failed TCP probe, attempting SSH anyway")

        for credential in self.credentials:
            if abandoned is not None and abandoned.is_set():
                logger.debug(f"Login to {host} abandoned")
                return None

            client_config = SSHClientConfig.from_credential(
                host,
                credential,
                timeout=self.config.ssh_attempt_timeout,
                poll_interval=self.config.poll_interval,
                output_callback=self.output_callback,
            )
            client = self.client_factory(client_config)
            try:
                client.connect()
            except SessionConnectionError as e:
                logger.debug(f"Credential '{credential.username}' failed on {host}: {e}")
                client.disconnect()
                continue

            if abandoned is not None and abandoned.is_set():
                logger.debug(f"Login to {host} abandoned after authenticating")
                client.disconnect()
                return None

            logger.info(f"Authenticated to {host} as '{credential.username}'")
            return CredentialMatch(credential=credential, client=client, connected_ip=host)

        logger.warning(f"No valid credentials for {host}")
        return None
