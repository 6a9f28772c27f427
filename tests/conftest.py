"""Shared fixtures: a scripted fake network standing in for sockets, DNS and SSH."""

import time

import pytest

from topocrawl.creds.models import Credential
from topocrawl.discovery import reachability
from topocrawl.discovery.config import TEMPLATE_DIR_ENV, DiscoveryConfig
from topocrawl.discovery.engine import DiscoveryEngine
from topocrawl.exceptions import SessionConnectionError

INVALID_INPUT = "% Invalid input detected at '^' marker."

SHOW_VERSION = """Cisco IOS Software, C3850 Software (CAT3K_CAA-UNIVERSALK9-M), Version 16.9.4, RELEASE SOFTWARE (fc2)
Technical Support: http://www.cisco.com/techsupport
Processor board ID FOC1234X0AB
Model number                    : WS-C3850-24T
"""

ARISTA_VERSION = """Arista DCS-7050SX-64
Hardware version:    01.00
Serial number:       JPE12345678
Software image version: 4.28.3M
"""


def cdp_entry(name, ip, local_if, remote_if, platform="cisco WS-C3850-24T"):
    return f"""-------------------------
Device ID: {name}
Entry address(es):
  IP address: {ip}
Platform: {platform},  Capabilities: Router Switch IGMP
Interface: {local_if},  Port ID (outgoing port): {remote_if}
Holdtime : 150 sec

Version :
Cisco IOS Software, Version 16.9.4

advertisement version: 2
"""


def cdp_output(*entries):
    return "".join(entries) + "\nTotal cdp entries displayed : %d\n" % len(entries)


class FakeDevice:
    """What one address answers with."""

    def __init__(self, prompt, outputs=None, password="secret", hang_on=None, login_delay=0.0):
        self.prompt = prompt
        self.password = password
        self.hang_on = hang_on
        self.login_delay = login_delay
        self.outputs = {
            'terminal length 0': '',
            'show version': SHOW_VERSION,
        }
        self.outputs.update(outputs or {})


class FakeSession:
    """Duck-typed stand-in for SSHClient."""

    def __init__(self, network, config):
        self.network = network
        self.config = config
        self.commands = []
        self.connected = False
        self.disconnected = False

    @property
    def host(self):
        return self.config.host

    @property
    def device(self):
        return self.network.devices[self.host]

    def connect(self):
        device = self.network.devices.get(self.host)
        if device is not None and device.login_delay:
            time.sleep(device.login_delay)
        if device is None or device.password != self.config.password:
            raise SessionConnectionError(f"Authentication failed for {self.host}")
        self.connected = True

    def create_shell(self):
        pass

    @property
    def output_buffer(self):
        return f"\r\n{self.device.prompt}"

    def find_prompt(self, buffer=None, attempts=3, timeout=5.0):
        return self.device.prompt

    def execute_command(self, command, prompt=None, timeout=30.0, fallback_on_timeout=True):
        self.commands.append(command)
        if command == self.device.hang_on:
            time.sleep(1.0)
        body = self.device.outputs.get(command, INVALID_INPUT)
        return f"{command}\n{body}\n{self.device.prompt}"

    def disconnect(self):
        self.disconnected = True


class FakeNetwork:
    """Devices by address, plus which addresses answer on TCP and what DNS says."""

    def __init__(self):
        self.devices = {}
        self.reachable = set()
        self.dns = {}
        self.sessions = []
        self.probes = []

    def add(self, ip, prompt, outputs=None, reachable=True, **kwargs):
        self.devices[ip] = FakeDevice(prompt, outputs, **kwargs)
        if reachable:
            self.reachable.add(ip)
        return self.devices[ip]

    def probe(self, host, port=22, timeout=3.0):
        self.probes.append((host, port, timeout))
        return host in self.reachable

    def resolve(self, hostname):
        return self.dns.get(hostname)

    def client_factory(self, config):
        session = FakeSession(self, config)
        self.sessions.append(session)
        return session

    def commands_for(self, ip):
        return [c for s in self.sessions if s.host == ip for c in s.commands]


@pytest.fixture
def network(monkeypatch):
    net = FakeNetwork()
    monkeypatch.setattr(reachability, 'probe_port', net.probe)
    monkeypatch.setattr(reachability, 'resolve_hostname', net.resolve)
    monkeypatch.delenv(TEMPLATE_DIR_ENV, raising=False)
    return net


@pytest.fixture
def credentials():
    return [Credential(username='admin', password='secret')]


@pytest.fixture
def make_engine(network, credentials, tmp_path):
    engines = []

    def _make(**overrides):
        overrides.setdefault('output_dir', str(tmp_path))
        config = DiscoveryConfig(**overrides)
        engine = DiscoveryEngine(credentials, config, client_factory=network.client_factory)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.close()
