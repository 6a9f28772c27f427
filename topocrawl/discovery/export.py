"""
TopoCrawl - Topology output.

Builds the device table document and the node/link graph document, and
writes both asynchronously. Writes go to a temp file first and are then
swapped in, so an interrupted crawl always leaves the last complete
snapshot on disk.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import aiofiles

from ..utils.interface_normalizer import InterfaceNormalizer
from .models import DeviceTable, NeighborField, NeighborProtocol, probe_field

logger = logging.getLogger(__name__)


def build_topology_document(table: DeviceTable,
                            discovered_at: Optional[datetime] = None) -> Dict[str, Any]:
    """{devices: {ip: device}, metadata: {...}}"""
    devices = table.devices()
    metadata = {
        'total_devices': len(devices),
        'discovered_at': (discovered_at or datetime.now()).isoformat(),
        'successful': sum(1 for d in devices if d.visited and not d.failed),
        'failed': sum(1 for d in devices if d.failed),
        'max_hop_count': max((d.hop_count for d in devices), default=0),
        'devices_with_hostname': sum(
            1 for d in devices if d.hostname and not d.hostname.startswith('unknown-')
        ),
        'devices_with_platform': sum(1 for d in devices if d.platform),
        'total_interfaces': sum(len(d.interfaces) for d in devices),
    }
    return {
        'devices': {ip: device.to_dict() for ip, device in table.items()},
        'metadata': metadata,
    }


def build_topology_graph(table: DeviceTable) -> Dict[str, List[Dict[str, Any]]]:
    """
    {nodes, links} for graph viewers.

    Parent-child links follow the crawl tree. Neighbor links carry the
    interface pair and are emitted once per physical link even when both
    ends reported it.
    """
    nodes = []
    links = []
    seen_links: Set[frozenset] = set()

    for ip, device in table.items():
        nodes.append({
            'id': ip,
            'label': device.label,
            'hop': device.hop_count,
            'status': device.status,
            'platform': device.platform,
            'platform_type': InterfaceNormalizer.detect_platform(device.platform),
            'capabilities': list(device.capabilities),
            'interfaces': [i.to_dict() for i in device.interfaces],
        })

    for ip, device in table.items():
        if device.parent and device.parent in table:
            links.append({
                'source': device.parent,
                'target': ip,
                'type': 'parent-child',
            })

        for neighbor in device.neighbors:
            neighbor_ip = probe_field(neighbor, NeighborField.IP)
            if not neighbor_ip:
                continue
            peer = table.find(neighbor_ip)
            if peer is None or peer is device:
                continue

            local_if, remote_if = InterfaceNormalizer.normalize_pair(
                probe_field(neighbor, NeighborField.LOCAL_INTERFACE),
                probe_field(neighbor, NeighborField.REMOTE_INTERFACE),
            )
            key = frozenset({(ip, local_if), (peer.ip_address, remote_if)})
            if key in seen_links:
                continue
            seen_links.add(key)

            protocol = NeighborProtocol.from_command(neighbor.get('discovered_via'))
            links.append({
                'source': ip,
                'target': peer.ip_address,
                'type': protocol.value,
                'source_interface': local_if,
                'target_interface': remote_if,
            })

    return {'nodes': nodes, 'links': links}


class TopologyWriter:
    """Async JSON writer for snapshots and final output."""

    def __init__(self, topology_path: Path, graph_path: Path):
        self.topology_path = Path(topology_path)
        self.graph_path = Path(graph_path)

    async def _write_json(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.tmp')
        content = json.dumps(data, indent=2, default=str)
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(content)
        os.replace(tmp_path, path)

    async def save(self, table: DeviceTable, discovered_at: Optional[datetime] = None) -> None:
        """Write both documents. Errors are logged; the crawl goes on."""
        try:
            await self._write_json(self.topology_path,
                                   build_topology_document(table, discovered_at))
            await self._write_json(self.graph_path, build_topology_graph(table))
        except OSError as e:
            logger.error(f"Failed to save topology snapshot: {e}")
            return
        logger.debug(f"Saved snapshot of {len(table)} devices to {self.topology_path}")
