"""
TopoCrawl Discovery - CDP/LLDP neighbor crawl.

Usage:
    import asyncio
    from topocrawl.creds import load_credentials
    from topocrawl.discovery import DiscoveryEngine, SeedDevice, ConsoleEventPrinter

    engine = DiscoveryEngine(load_credentials("creds.json"))
    engine.events.subscribe(ConsoleEventPrinter().handle_event)
    result = asyncio.run(engine.crawl([SeedDevice("10.0.0.1", "core-sw1")], max_hops=2))
    print(f"{result.successful} devices discovered")
"""

from .config import DiscoveryConfig
from .engine import DiscoveryEngine, matching_exclusion
from .events import (
    ConsoleEventPrinter,
    DiscoveryEvent,
    DiscoveryStats,
    EventEmitter,
    EventType,
    JsonEventPrinter,
    LogLevel,
)
from .export import TopologyWriter, build_topology_document, build_topology_graph
from .models import (
    DeviceTable,
    DeviceVendor,
    DiscoveredDevice,
    DiscoveryResult,
    InterfaceRecord,
    LocalInterfaceLink,
    NeighborField,
    NeighborProtocol,
    ReachabilityStatus,
    SeedDevice,
    probe_field,
)
from .reachability import CredentialMatch, CredentialResolver, probe_port, resolve_hostname

__all__ = [
    # Engine
    'DiscoveryEngine',
    'DiscoveryConfig',
    'matching_exclusion',
    # Models
    'DeviceTable',
    'DeviceVendor',
    'DiscoveredDevice',
    'DiscoveryResult',
    'InterfaceRecord',
    'LocalInterfaceLink',
    'NeighborField',
    'NeighborProtocol',
    'ReachabilityStatus',
    'SeedDevice',
    'probe_field',
    # Reachability
    'CredentialMatch',
    'CredentialResolver',
    'probe_port',
    'resolve_hostname',
    # Events
    'ConsoleEventPrinter',
    'DiscoveryEvent',
    'DiscoveryStats',
    'EventEmitter',
    'EventType',
    'JsonEventPrinter',
    'LogLevel',
    # Output
    'TopologyWriter',
    'build_topology_document',
    'build_topology_graph',
]
