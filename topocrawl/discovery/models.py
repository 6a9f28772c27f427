"""
TopoCrawl - Discovery Data Models.

Device, interface and neighbor records shared by the crawler, the SSH
collector and the exporters, plus the device table the crawler owns.

Design Principles:
- Devices are created on first reference (seed or neighbor mention) and
  never deleted; they only move visited=False -> visited=True, optionally
  failed=True
- The table keys devices by a stable id; the current IP is just an index
  entry, so re-keying is one map update
- Neighbor records stay loosely typed; fields are read through an ordered
  alias table because vendor output is inconsistent
"""

import ipaddress
import itertools
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set


class ReachabilityStatus(str, Enum):
    """TCP reachability as last observed."""
    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class NeighborProtocol(str, Enum):
    """Neighbor discovery protocol."""
    CDP = "cdp"
    LLDP = "lldp"

    @classmethod
    def from_command(cls, command: Optional[str]) -> "NeighborProtocol":
        """'show cdp neighbors detail' -> CDP, anything else -> LLDP."""
        if command and "cdp" in command.lower():
            return cls.CDP
        return cls.LLDP


class DeviceVendor(str, Enum):
    """Known device vendors."""
    CISCO = "cisco"
    ARISTA = "arista"
    JUNIPER = "juniper"
    PALOALTO = "paloalto"
    FORTINET = "fortinet"
    HUAWEI = "huawei"
    HP = "hp"
    LINUX = "linux"
    UNKNOWN = "unknown"


# =============================================================================
# Neighbor field aliases
# =============================================================================

class NeighborField(str, Enum):
    """Logical attributes read from a neighbor record."""
    IP = "ip"
    LOCAL_INTERFACE = "local_interface"
    REMOTE_INTERFACE = "remote_interface"
    HOSTNAME = "hostname"
    PLATFORM = "platform"
    CAPABILITIES = "capabilities"
    MANAGEMENT_IP = "management_ip"


# Order is significant: first present key wins.
NEIGHBOR_FIELD_ALIASES: Dict[NeighborField, Sequence[str]] = {
    NeighborField.IP: (
        'mgmt_address', 'management_ip', 'ip_address', 'neighbor_ip',
        'MGMT_ADDRESS', 'IP_ADDRESS', 'NEIGHBOR_IP',
    ),
    NeighborField.LOCAL_INTERFACE: (
        'local_interface', 'local_intf', 'interface', 'port', 'local_port',
        'LOCAL_INTERFACE',
    ),
    NeighborField.REMOTE_INTERFACE: (
        'remote_interface', 'remote_intf', 'neighbor_interface', 'port_id',
        'remote_port', 'NEIGHBOR_INTERFACE',
    ),
    NeighborField.HOSTNAME: (
        'neighbor_name', 'device_id', 'hostname', 'neighbor', 'system_name',
        'NEIGHBOR_NAME', 'DEVICE_ID', 'HOSTNAME',
    ),
    NeighborField.PLATFORM: ('platform', 'PLATFORM'),
    NeighborField.CAPABILITIES: ('capabilities', 'CAPABILITIES'),
    NeighborField.MANAGEMENT_IP: ('mgmt_address', 'management_ip', 'MGMT_ADDRESS'),
}

# Fields that may also sit inside a nested "neighbors" dict
NESTED_FIELDS = {NeighborField.IP, NeighborField.PLATFORM}


def _first_value(record: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def probe_field(record: Dict[str, Any], name: NeighborField) -> Optional[str]:
    """Read a logical field from a neighbor record through its alias list."""
    keys = NEIGHBOR_FIELD_ALIASES[name]
    value = _first_value(record, keys)
    if value is None and name in NESTED_FIELDS:
        nested = record.get('neighbors')
        if isinstance(nested, dict):
            value = _first_value(nested, keys)
    return value


def probe_capabilities(record: Dict[str, Any]) -> List[str]:
    """Capabilities as a list; strings split on whitespace and commas."""
    for key in NEIGHBOR_FIELD_ALIASES[NeighborField.CAPABILITIES]:
        value = record.get(key)
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        if isinstance(value, str) and value.strip():
            return [c for c in re.split(r'[\s,]+', value.strip()) if c]
    return []


def is_valid_ipv4(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        ipaddress.IPv4Address(value.strip())
        return True
    except ValueError:
        return False


def is_ip_address(value: Optional[str]) -> bool:
    """True for any literal IPv4/IPv6 address."""
    if not value:
        return False
    try:
        ipaddress.ip_address(value.strip())
        return True
    except ValueError:
        return False


# =============================================================================
# Device records
# =============================================================================

@dataclass
class InterfaceRecord:
    """One port on a device and what it connects to."""
    name: str
    connected_to: Optional[str] = None           # Neighbor IP
    remote_interface: Optional[str] = None
    status: str = "up"
    type: str = NeighborProtocol.LLDP.value     # cdp | lldp

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'connected_to': self.connected_to,
            'remote_interface': self.remote_interface,
            'status': self.status,
            'type': self.type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InterfaceRecord':
        return cls(
            name=data['name'],
            connected_to=data.get('connected_to'),
            remote_interface=data.get('remote_interface'),
            status=data.get('status', 'up'),
            type=data.get('type', NeighborProtocol.LLDP.value),
        )


@dataclass
class LocalInterfaceLink:
    """Neighbor seen on a local interface."""
    connected_to: str
    remote_interface: Optional[str] = None
    discovered_via: Optional[str] = None         # Command that reported it

    def to_dict(self) -> Dict[str, Any]:
        return {
            'connected_to': self.connected_to,
            'remote_interface': self.remote_interface,
            'discovered_via': self.discovered_via,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocalInterfaceLink':
        return cls(
            connected_to=data['connected_to'],
            remote_interface=data.get('remote_interface'),
            discovered_via=data.get('discovered_via'),
        )


@dataclass
class DiscoveredDevice:
    """
    Everything known about one network node.

    Mutated in place during its single discovery pass. The crawler's
    DeviceTable owns every instance.
    """
    # Identity
    ip_address: str
    hostname: str = ""

    # Inventory
    platform: Optional[str] = None
    device_type: DeviceVendor = DeviceVendor.UNKNOWN
    serial_number: Optional[str] = None
    model: Optional[str] = None
    software_version: Optional[str] = None
    management_ip: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)

    # Topology
    interfaces: List[InterfaceRecord] = field(default_factory=list)
    neighbors: List[Dict[str, Any]] = field(default_factory=list)
    local_interfaces: Dict[str, LocalInterfaceLink] = field(default_factory=dict)
    parent: Optional[str] = None                 # IP of discovering device
    hop_count: int = 0

    # Status
    visited: bool = False
    failed: bool = False
    error_msg: Optional[str] = None
    reachability_status: ReachabilityStatus = ReachabilityStatus.UNKNOWN
    successful_credential: Optional[str] = None  # Username that worked
    original_ip: Optional[str] = None            # Address before DNS fallback
    prompt: Optional[str] = None
    raw_data: Dict[str, str] = field(default_factory=dict)  # command -> output

    # Timestamps
    discovered_at: Optional[datetime] = None
    last_update: Optional[datetime] = None

    def __post_init__(self):
        if self.discovered_at is None:
            self.discovered_at = datetime.now()

    @property
    def label(self) -> str:
        return self.hostname or self.ip_address

    @property
    def status(self) -> str:
        """success | failed | pending"""
        if self.failed:
            return "failed"
        if self.visited:
            return "success"
        return "pending"

    @property
    def interface_by_name(self) -> Dict[str, InterfaceRecord]:
        return {iface.name: iface for iface in self.interfaces}

    def add_interface(self, interface: InterfaceRecord) -> bool:
        """Add an interface record unless one with that name exists."""
        if interface.name in self.interface_by_name:
            return False
        self.interfaces.append(interface)
        return True

    def add_local_link(self, interface: str, link: LocalInterfaceLink,
                       overwrite: bool = True) -> None:
        if overwrite or interface not in self.local_interfaces:
            self.local_interfaces[interface] = link

    def mark_failed(self, error: str,
                    reachability: Optional[ReachabilityStatus] = None) -> None:
        self.failed = True
        self.error_msg = error
        if reachability is not None:
            self.reachability_status = reachability
        self.last_update = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'hostname': self.hostname,
            'ip_address': self.ip_address,
            'platform': self.platform,
            'device_type': self.device_type.value,
            'serial_number': self.serial_number,
            'model': self.model,
            'software_version': self.software_version,
            'management_ip': self.management_ip,
            'capabilities': list(self.capabilities),
            'interfaces': [i.to_dict() for i in self.interfaces],
            'neighbors': list(self.neighbors),
            'local_interfaces': {
                name: link.to_dict() for name, link in self.local_interfaces.items()
            },
            'parent': self.parent,
            'hop_count': self.hop_count,
            'visited': self.visited,
            'failed': self.failed,
            'error_msg': self.error_msg,
            'reachability_status': self.reachability_status.value,
            'successful_credential': self.successful_credential,
            'original_ip': self.original_ip,
            'prompt': self.prompt,
            'raw_data': dict(self.raw_data),
            'discovered_at': self.discovered_at.isoformat() if self.discovered_at else None,
            'last_update': self.last_update.isoformat() if self.last_update else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscoveredDevice':
        """Create a device from a snapshot entry."""
        discovered_at = data.get('discovered_at')
        last_update = data.get('last_update')
        return cls(
            ip_address=data['ip_address'],
            hostname=data.get('hostname') or "",
            platform=data.get('platform'),
            device_type=DeviceVendor(data.get('device_type', 'unknown')),
            serial_number=data.get('serial_number'),
            model=data.get('model'),
            software_version=data.get('software_version'),
            management_ip=data.get('management_ip'),
            capabilities=list(data.get('capabilities', [])),
            interfaces=[InterfaceRecord.from_dict(i) for i in data.get('interfaces', [])],
            neighbors=list(data.get('neighbors', [])),
            local_interfaces={
                name: LocalInterfaceLink.from_dict(link)
                for name, link in data.get('local_interfaces', {}).items()
            },
            parent=data.get('parent'),
            hop_count=data.get('hop_count', 0),
            visited=data.get('visited', False),
            failed=data.get('failed', False),
            error_msg=data.get('error_msg'),
            reachability_status=ReachabilityStatus(
                data.get('reachability_status', 'unknown')
            ),
            successful_credential=data.get('successful_credential'),
            original_ip=data.get('original_ip'),
            prompt=data.get('prompt'),
            raw_data=dict(data.get('raw_data', {})),
            discovered_at=datetime.fromisoformat(discovered_at) if discovered_at else None,
            last_update=datetime.fromisoformat(last_update) if last_update else None,
        )


@dataclass(frozen=True)
class SeedDevice:
    """User-supplied entry point."""
    ip_address: str
    hostname: str = ""


# =============================================================================
# Device table
# =============================================================================

class DeviceTable:
    """
    Arena of devices by stable id with a mutable ip -> id index.

    Also holds the visited/failed/visited-hostname tracking sets so that
    re-keying can update every view of a device in one call.
    """

    def __init__(self):
        self._devices: Dict[int, DiscoveredDevice] = {}
        self._by_ip: Dict[str, int] = {}
        self._aliases: Dict[str, int] = {}       # Pre-rekey addresses
        self._ids = itertools.count(1)
        self.visited_ips: Set[str] = set()
        self.failed_ips: Set[str] = set()
        self.visited_hostnames: Set[str] = set()

    def __len__(self) -> int:
        return len(self._by_ip)

    def __contains__(self, ip: str) -> bool:
        return ip in self._by_ip

    def __iter__(self) -> Iterator[DiscoveredDevice]:
        return iter(self.devices())

    def add(self, device: DiscoveredDevice) -> int:
        """
        Insert a device under its current IP.

        Raises:
            KeyError: the IP is already taken
        """
        if device.ip_address in self._by_ip:
            raise KeyError(f"{device.ip_address} already in device table")
        device_id = next(self._ids)
        self._devices[device_id] = device
        self._by_ip[device.ip_address] = device_id
        if device.original_ip and device.original_ip != device.ip_address:
            self._aliases.setdefault(device.original_ip, device_id)
        return device_id

    def get(self, device_id: int) -> DiscoveredDevice:
        return self._devices[device_id]

    def id_of(self, ip: str) -> Optional[int]:
        return self._by_ip.get(ip)

    def get_by_ip(self, ip: str) -> Optional[DiscoveredDevice]:
        device_id = self._by_ip.get(ip)
        return self._devices[device_id] if device_id is not None else None

    def find(self, ip: str) -> Optional[DiscoveredDevice]:
        """Look up by current or original (pre-rekey) address."""
        device = self.get_by_ip(ip)
        if device is None and ip in self._aliases:
            device = self._devices[self._aliases[ip]]
        return device

    def devices(self) -> List[DiscoveredDevice]:
        """Devices in table order."""
        return [self._devices[i] for i in self._by_ip.values()]

    def items(self) -> List[tuple]:
        return [(ip, self._devices[i]) for ip, i in self._by_ip.items()]

    def is_known(self, ip: str) -> bool:
        """Already tracked, visited, or failed."""
        return ip in self._by_ip or ip in self.visited_ips or ip in self.failed_ips

    def mark_visited(self, device: DiscoveredDevice) -> None:
        device.visited = True
        self.visited_ips.add(device.ip_address)

    def mark_failed(self, device: DiscoveredDevice) -> None:
        device.failed = True
        self.failed_ips.add(device.ip_address)

    def rekey(self, device: DiscoveredDevice, new_ip: str) -> bool:
        """
        Move a device to a new address.

        Updates the index, the tracking sets, and every parent/connected_to
        reference in one synchronous step. Refuses (returns False) when
        another device already owns new_ip.
        """
        old_ip = device.ip_address
        if new_ip == old_ip:
            return True
        device_id = self._by_ip.get(old_ip)
        if device_id is None or self._devices[device_id] is not device:
            raise KeyError(f"{old_ip} is not keyed to this device")
        if new_ip in self._by_ip:
            return False

        del self._by_ip[old_ip]
        self._by_ip[new_ip] = device_id
        self._aliases[old_ip] = device_id

        for tracked in (self.visited_ips, self.failed_ips):
            if old_ip in tracked:
                tracked.discard(old_ip)
                tracked.add(new_ip)

        device.ip_address = new_ip
        if not device.original_ip:
            device.original_ip = old_ip

        for other in self._devices.values():
            if other.parent == old_ip:
                other.parent = new_ip
            for link in other.local_interfaces.values():
                if link.connected_to == old_ip:
                    link.connected_to = new_ip
            for iface in other.interfaces:
                if iface.connected_to == old_ip:
                    iface.connected_to = new_ip

        return True


@dataclass
class DiscoveryResult:
    """Outcome of a crawl."""
    table: DeviceTable
    seeds: List[str] = field(default_factory=list)
    max_hops: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    topology_file: Optional[str] = None
    graph_file: Optional[str] = None

    @property
    def devices(self) -> List[DiscoveredDevice]:
        return self.table.devices()

    @property
    def successful(self) -> int:
        return sum(1 for d in self.devices if d.visited and not d.failed)

    @property
    def failed(self) -> int:
        return sum(1 for d in self.devices if d.failed)

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0
