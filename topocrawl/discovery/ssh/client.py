"""
TopoCrawl SSH Client - Interactive shell session over paramiko.

Path: topocrawl/discovery/ssh/client.py

One authenticated shell per device. The protocol has no message
boundaries, so command completion is inferred by watching for the CLI
prompt in the output stream.

Session states:
    DISCONNECTED -> CONNECTED -> SHELL_READY -> (COMMAND_IN_FLIGHT <-> SHELL_READY)*
    -> DISCONNECTED

A reader thread pushes every received chunk into the full-session buffer,
the line buffer (output_callback per completed line) and each active
subscriber queue. Prompt detection and command execution subscribe for
the duration of one command only.
"""

import codecs
import io
import logging
import queue
import re
import socket
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

import paramiko

from ...exceptions import (
    CommandTimeoutError,
    PromptDetectionError,
    SessionConnectionError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Algorithm preferences: strong first, legacy kept last for old firmware
# =============================================================================

PREFERRED_KEX = (
    'curve25519-sha256',
    'curve25519-sha256@libssh.org',
    'ecdh-sha2-nistp256',
    'ecdh-sha2-nistp384',
    'ecdh-sha2-nistp521',
    'diffie-hellman-group-exchange-sha256',
    'diffie-hellman-group14-sha256',
    'diffie-hellman-group16-sha512',
    'diffie-hellman-group14-sha1',
    'diffie-hellman-group1-sha1',
    'diffie-hellman-group-exchange-sha1',
)

PREFERRED_CIPHERS = (
    'aes128-gcm@openssh.com',
    'aes256-gcm@openssh.com',
    'aes128-ctr',
    'aes192-ctr',
    'aes256-ctr',
    'aes128-cbc',
    'aes192-cbc',
    'aes256-cbc',
    '3des-cbc',
)

PREFERRED_HOST_KEYS = (
    'rsa-sha2-512',
    'rsa-sha2-256',
    'ssh-rsa',
    'ecdsa-sha2-nistp256',
    'ssh-ed25519',
)

PREFERRED_MACS = (
    'hmac-sha2-256-etm@openssh.com',
    'hmac-sha2-512-etm@openssh.com',
    'hmac-sha2-256',
    'hmac-sha2-512',
    'hmac-sha1',
    'hmac-md5',
)

# Tried in order against whatever output has arrived
PROMPT_PATTERNS = [
    re.compile(r'(\S+)[#>]\s*$'),
    re.compile(r'(\S+)[$#>%]\s*$'),
    re.compile(r'^\s*(\S+[@:]\S+)[#$>]\s*$', re.MULTILINE),
    re.compile(r'^([A-Za-z0-9_\-]+\s*[#>:])\s*$', re.MULTILINE),
    re.compile(r'^\s*([A-Za-z0-9_\-.]+(?:@[A-Za-z0-9_\-.]+)?[#$>%])\s*$', re.MULTILINE),
]

ANSI_ESCAPE = re.compile(r'\x1b\[[0-9;?]*[A-Za-z]|\x1b[()][AB012]')

GENERIC_PROMPT_ENDINGS = ('#', '>', '$')


def filter_ansi_sequences(text: str) -> str:
    """Remove terminal escape sequences."""
    return ANSI_ESCAPE.sub('', text)


def load_private_key(key_content: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """
    Load a PEM/OpenSSH private key, trying RSA, Ed25519, then ECDSA.

    Raises:
        SessionConnectionError: no key type accepts the content
    """
    key_file = io.StringIO(key_content)
    for key_class in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_class.from_private_key(key_file, password=passphrase)
        except paramiko.SSHException:
            key_file.seek(0)
    raise SessionConnectionError("Unable to load private key (unsupported type or bad passphrase)")


class SessionState(str, Enum):
    """Shell session lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SHELL_READY = "shell_ready"
    COMMAND_IN_FLIGHT = "command_in_flight"


@dataclass
class SSHClientConfig:
    """Connection parameters for one session."""
    host: str
    username: str
    password: Optional[str] = None
    key_content: Optional[str] = None
    key_passphrase: Optional[str] = None
    port: int = 22
    timeout: float = 20.0
    poll_interval: float = 0.25
    term: str = 'vt100'
    width: int = 80
    height: int = 24
    output_callback: Optional[Callable[[str], None]] = None

    @classmethod
    def from_credential(cls, host: str, credential: Any, **kwargs) -> 'SSHClientConfig':
        """Build from a topocrawl.creds.Credential."""
        return cls(
            host=host,
            username=credential.username,
            password=credential.password,
            key_content=credential.key_content,
            key_passphrase=credential.key_passphrase,
            port=credential.port,
            **kwargs,
        )


class SSHClient:
    """
    Interactive SSH shell client.

    Example:
        client = SSHClient(SSHClientConfig(host="10.0.0.1", username="admin",
                                           password="secret"))
        client.connect()
        client.create_shell()
        prompt = client.find_prompt()
        output = client.execute_command("show version", prompt, timeout=15)
        client.disconnect()
    """

    def __init__(self, config: SSHClientConfig):
        self.config = config
        self._state = SessionState.DISCONNECTED
        self._transport: Optional[paramiko.Transport] = None
        self._channel: Optional[paramiko.Channel] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._output_buffer = ""
        self._line_buffer = ""
        self._subscribers: List[queue.Queue] = []
        self._negotiated: Dict[str, Optional[str]] = {}
        self._prompt: Optional[str] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def prompt(self) -> Optional[str]:
        return self._prompt

    @property
    def output_buffer(self) -> str:
        """Everything received since the shell opened."""
        with self._lock:
            return self._output_buffer

    def connection_info(self) -> Dict[str, Any]:
        """Session details including the negotiated algorithm suite."""
        return {
            'host': self.config.host,
            'port': self.config.port,
            'username': self.config.username,
            'state': self._state.value,
            'prompt': self._prompt,
            'algorithms': dict(self._negotiated),
        }

    # =========================================================================
    # Connection
    # =========================================================================

    def connect(self) -> None:
        """
        Open the transport and authenticate.

        Raises:
            SessionConnectionError: negotiation, authentication, or timeout
        """
        if self._state != SessionState.DISCONNECTED:
            raise SessionConnectionError(
                f"connect() called in state {self._state.value} for {self.host}"
            )

        target = f"{self.config.username}@{self.host}:{self.config.port}"
        logger.debug(f"Connecting to {target}")
        try:
            self._transport = self._open_transport()
            self._authenticate(self._transport)
        except SessionConnectionError:
            self._close_transport()
            raise
        except paramiko.AuthenticationException as e:
            self._close_transport()
            raise SessionConnectionError(f"Authentication failed for {target}: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            self._close_transport()
            raise SessionConnectionError(f"SSH connection to {target} failed: {e}") from e

        self._record_negotiated(self._transport)
        self._closed.clear()
        self._state = SessionState.CONNECTED
        logger.debug(f"Connected to {target} ({self._negotiated})")

    def _open_transport(self) -> paramiko.Transport:
        """TCP connect, offer algorithms, run key exchange."""
        sock = socket.create_connection(
            (self.config.host, self.config.port), timeout=self.config.timeout
        )
        try:
            transport = paramiko.Transport(sock)
            transport.banner_timeout = self.config.timeout
            transport.auth_timeout = self.config.timeout
            self._apply_algorithms(transport)
            transport.start_client(timeout=self.config.timeout)
        except Exception:
            sock.close()
            raise
        return transport

    @staticmethod
    def _apply_algorithms(transport: paramiko.Transport) -> None:
        """Offer the preferred lists, filtered to what paramiko implements."""
        options = transport.get_security_options()
        for attr, preferred, supported in (
            ('kex', PREFERRED_KEX, transport._kex_info),
            ('ciphers', PREFERRED_CIPHERS, transport._cipher_info),
            ('digests', PREFERRED_MACS, transport._mac_info),
            ('key_types', PREFERRED_HOST_KEYS, transport._key_info),
        ):
            offered = tuple(name for name in preferred if name in supported)
            if offered:
                setattr(options, attr, offered)

    def _authenticate(self, transport: paramiko.Transport) -> None:
        """Public key, then password, then keyboard-interactive."""
        cfg = self.config

        if cfg.key_content:
            pkey = load_private_key(cfg.key_content, cfg.key_passphrase)
            try:
                transport.auth_publickey(cfg.username, pkey)
                return
            except paramiko.AuthenticationException:
                if cfg.password is None:
                    raise
                logger.debug(f"Key rejected by {self.host}, trying password")

        if cfg.password is None:
            raise SessionConnectionError(f"No password or key for {cfg.username}@{self.host}")

        try:
            transport.auth_password(cfg.username, cfg.password)
            return
        except paramiko.BadAuthenticationType as e:
            if 'keyboard-interactive' not in e.allowed_types:
                raise
            logger.debug(f"{self.host} requires keyboard-interactive auth")
        except paramiko.AuthenticationException:
            if not transport.is_active():
                raise
            logger.debug(f"Password rejected by {self.host}, trying keyboard-interactive")

        transport.auth_interactive(cfg.username, self._interactive_handler)

    def _interactive_handler(self, title: str, instructions: str,
                             prompt_list: List) -> List[str]:
        """Answer every challenge prompt with the password."""
        return [self.config.password] * len(prompt_list)

    def _record_negotiated(self, transport: Any) -> None:
        kex_engine = getattr(transport, 'kex_engine', None)
        self._negotiated = {
            'kex': getattr(kex_engine, 'name', None) or type(kex_engine).__name__,
            'cipher': getattr(transport, 'local_cipher', None),
            'mac': getattr(transport, 'local_mac', None),
            'host_key_type': getattr(transport, 'host_key_type', None),
            'remote_version': getattr(transport, 'remote_version', None),
        }

    # =========================================================================
    # Shell
    # =========================================================================

    def create_shell(self) -> None:
        """
        Open a PTY-backed shell and start the reader thread.

        Raises:
            SessionConnectionError: not connected, or channel setup failed
        """
        if self._state != SessionState.CONNECTED:
            raise SessionConnectionError(
                f"create_shell() called in state {self._state.value} for {self.host}"
            )

        try:
            channel = self._transport.open_session(timeout=self.config.timeout)
            channel.get_pty(term=self.config.term, width=self.config.width,
                            height=self.config.height)
            channel.invoke_shell()
            channel.settimeout(self.config.poll_interval)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SessionConnectionError(f"Failed to open shell on {self.host}: {e}") from e

        self._channel = channel
        self._stop.clear()
        self._closed.clear()
        self._reader = threading.Thread(
            target=self._read_loop, name=f"ssh-reader-{self.host}", daemon=True
        )
        self._reader.start()
        self._state = SessionState.SHELL_READY
        logger.debug(f"Shell ready on {self.host}")

    def _read_loop(self) -> None:
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        channel = self._channel
        while not self._stop.is_set():
            try:
                data = channel.recv(4096)
            except socket.timeout:
                continue
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"Read from {self.host} ended: {e}")
                break
            if not data:
                logger.debug(f"Channel to {self.host} closed by peer")
                break
            self._on_data(decoder.decode(data))
        self._closed.set()

    def _on_data(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self._output_buffer += text
            self._line_buffer += text
            *complete, self._line_buffer = self._line_buffer.split('\n')
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            subscriber.put(text)
        for line in complete:
            self._emit_line(line.rstrip('\r'))

    def _emit_line(self, line: str) -> None:
        if self.config.output_callback is None:
            return
        try:
            self.config.output_callback(line)
        except Exception as e:
            # Don't let a logging hook kill the reader
            logger.debug(f"Output callback error: {e}")

    @contextmanager
    def subscribe(self) -> Iterator[queue.Queue]:
        """Receive output chunks for the duration of the block."""
        subscriber: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.append(subscriber)
        try:
            yield subscriber
        finally:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

    def _require_shell(self) -> None:
        if self._state not in (SessionState.SHELL_READY, SessionState.COMMAND_IN_FLIGHT):
            raise SessionConnectionError(
                f"No shell on {self.host} (state {self._state.value})"
            )

    def _check_alive(self, subscriber: queue.Queue) -> None:
        if self._state == SessionState.DISCONNECTED:
            raise SessionConnectionError(f"Session to {self.host} was disconnected")
        if self._closed.is_set() and subscriber.empty():
            raise SessionConnectionError(f"Channel to {self.host} closed")

    # =========================================================================
    # Prompt detection
    # =========================================================================

    @staticmethod
    def match_prompt(text: str) -> Optional[str]:
        """First prompt shape found at the end of text, or None."""
        visible = filter_ansi_sequences(text)
        for pattern in PROMPT_PATTERNS:
            match = pattern.search(visible)
            if match:
                return match.group(0).strip()
        return None

    def find_prompt(self, buffer: Optional[str] = None, attempts: int = 3,
                    timeout: float = 5.0) -> str:
        """
        Infer the CLI prompt.

        Checks buffer (default: session output so far), then sends an empty
        line up to `attempts` times, racing a prompt match against `timeout`
        each time.

        Raises:
            PromptDetectionError: no attempt produced a prompt
        """
        self._require_shell()

        prompt = self.match_prompt(buffer if buffer is not None else self.output_buffer)
        if prompt:
            self._prompt = prompt
            logger.debug(f"Prompt on {self.host} from buffer: {prompt!r}")
            return prompt

        for attempt in range(1, attempts + 1):
            with self.subscribe() as subscriber:
                self.send_command("")
                received = ""
                deadline = time.monotonic() + timeout
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    try:
                        received += subscriber.get(
                            timeout=min(self.config.poll_interval, remaining)
                        )
                    except queue.Empty:
                        pass
                    prompt = self.match_prompt(received)
                    if prompt:
                        self._prompt = prompt
                        logger.debug(f"Prompt on {self.host} (attempt {attempt}): {prompt!r}")
                        return prompt
                    self._check_alive(subscriber)
            logger.debug(f"Prompt attempt {attempt}/{attempts} on {self.host} failed")

        raise PromptDetectionError(
            f"Could not detect prompt on {self.host} after {attempts} attempts"
        )

    # =========================================================================
    # Commands
    # =========================================================================

    def send_command(self, text: str) -> None:
        """Write text plus newline to the shell."""
        self._require_shell()
        try:
            self._channel.sendall(text + "\n")
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise SessionConnectionError(f"Send to {self.host} failed: {e}") from e

    @staticmethod
    def prompt_seen(output: str, prompt: str) -> bool:
        """Exact or trailing-whitespace-tolerant prompt match."""
        clean_prompt = re.sub(r'[\r\n]+$', '', prompt)
        tail = output.rstrip()
        if tail.endswith(clean_prompt):
            return True
        # Single-character fallback prompts only count at the end
        return len(clean_prompt) > 1 and clean_prompt in output

    def execute_command(self, command: str, prompt: Optional[str] = None,
                        timeout: float = 30.0, fallback_on_timeout: bool = True) -> str:
        """
        Send a command and collect output until the prompt returns.

        On timeout, output whose last line ends in #, > or $ is accepted
        when fallback_on_timeout is set.

        Raises:
            CommandTimeoutError: prompt never seen
            SessionConnectionError: session dropped mid-command
        """
        self._require_shell()
        prompt = prompt or self._prompt
        self._state = SessionState.COMMAND_IN_FLIGHT
        try:
            with self.subscribe() as subscriber:
                self.send_command(command)
                output = ""
                deadline = time.monotonic() + timeout
                while True:
                    try:
                        output += subscriber.get(timeout=self.config.poll_interval)
                    except queue.Empty:
                        pass
                    visible = filter_ansi_sequences(output)
                    if prompt and self.prompt_seen(visible, prompt):
                        return visible
                    self._check_alive(subscriber)
                    if time.monotonic() >= deadline:
                        break

            visible = filter_ansi_sequences(output)
            if not visible.strip():
                raise CommandTimeoutError(
                    f"Timeout with no output for command: {command}", command
                )
            last_line = visible.strip().splitlines()[-1].strip()
            if fallback_on_timeout and last_line.endswith(GENERIC_PROMPT_ENDINGS):
                logger.debug(f"Accepting generic prompt {last_line!r} for {command!r} on {self.host}")
                return visible
            raise CommandTimeoutError(
                f"Timeout waiting for prompt after command: {command}", command, visible
            )
        finally:
            if self._state == SessionState.COMMAND_IN_FLIGHT:
                self._state = SessionState.SHELL_READY

    # =========================================================================
    # Teardown
    # =========================================================================

    def _close_transport(self) -> None:
        if self._transport is not None:
            try:
                self._transport.close()
            except Exception as e:
                logger.debug(f"Error closing transport to {self.host}: {e}")
            self._transport = None

    def disconnect(self) -> None:
        """Flush the partial line and tear everything down. Idempotent."""
        with self._lock:
            partial, self._line_buffer = self._line_buffer, ""
        if partial:
            self._emit_line(partial.rstrip('\r'))

        self._stop.set()
        if self._channel is not None:
            try:
                self._channel.close()
            except Exception as e:
                logger.debug(f"Error closing channel to {self.host}: {e}")
            self._channel = None

        self._close_transport()

        reader, self._reader = self._reader, None
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=2.0)

        if self._state != SessionState.DISCONNECTED:
            logger.debug(f"Disconnected from {self.host}")
        self._state = SessionState.DISCONNECTED

    def __enter__(self) -> 'SSHClient':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()
