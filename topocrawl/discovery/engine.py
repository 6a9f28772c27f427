"""
TopoCrawl - Discovery Engine.

Hop-bounded breadth-first crawl over CDP/LLDP neighbor data.

Features:
- Seeds at hop 0, neighbors queued one hop further out
- Sequential per-device workflow under an overall timeout
- Reachability probes with DNS fallback and in-place re-keying
- Exclusion filtering before any neighbor device is created
- Bidirectional interface bookkeeping
- Snapshot of the device table and graph after every device
- Structured event emission for console or GUI hosts

Blocking paramiko and socket work runs in a thread pool; the crawl itself
is a single coroutine, so the device table has one writer.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..creds.models import Credential
from ..exceptions import DiscoveryTimeoutError, NoCredentialsError
from ..utils.interface_normalizer import InterfaceNormalizer
from .config import DiscoveryConfig
from .events import EventEmitter, LogLevel
from .export import TopologyWriter
from .models import (
    DeviceTable, DiscoveredDevice, DiscoveryResult, InterfaceRecord,
    LocalInterfaceLink, NeighborField, NeighborProtocol, ReachabilityStatus,
    SeedDevice, is_ip_address, probe_capabilities, probe_field,
)
from .reachability import (
    ClientFactory, CredentialMatch, CredentialResolver, is_resolvable_name,
)
from .ssh.collector import NeighborCollector, extract_hostname_from_prompt
from .ssh.parsers import NeighborParser

ProgressCallback = Callable[[str], None]

module_logger = logging.getLogger(__name__)


def matching_exclusion(hostname: Optional[str], patterns: Sequence[str]) -> Optional[str]:
    """First pattern contained (case-insensitively) in hostname, if any."""
    if not hostname:
        return None
    lowered = hostname.lower()
    for pattern in patterns:
        if pattern and pattern.lower() in lowered:
            return pattern
    return None


def _release_abandoned_session(future: Future) -> None:
    """Close a session that authenticated after its device was given up on."""
    if future.cancelled() or future.exception() is not None:
        return
    match = future.result()
    if match is not None:
        module_logger.info(f"Closing late session to {match.connected_ip}")
        match.client.disconnect()


class DiscoveryEngine:
    """
    BFS network crawler.

    Usage:
        engine = DiscoveryEngine(credentials, config)

        printer = ConsoleEventPrinter()
        engine.events.subscribe(printer.handle_event)

        result = await engine.crawl([SeedDevice("10.0.0.1")], max_hops=2)
    """

    def __init__(
        self,
        credentials: Sequence[Credential],
        config: Optional[DiscoveryConfig] = None,
        parser: Optional[NeighborParser] = None,
        resolver: Optional[CredentialResolver] = None,
        client_factory: Optional[ClientFactory] = None,
        event_emitter: Optional[EventEmitter] = None,
        progress_callback: Optional[ProgressCallback] = None,
        logger: Any = None,
    ):
        """
        Initialize discovery engine.

        Args:
            credentials: Credentials to try, in priority order
            config: Tunables (defaults if not provided)
            parser: Neighbor parser (loaded from the template dir if not provided)
            resolver: Reachability/credential resolver (built if not provided)
            client_factory: SSH client factory passed to the built resolver
            event_emitter: Event emitter for hosts (created if not provided)
            progress_callback: Called with human-readable status strings
            logger: Anything with debug/info/warning/error

        Raises:
            NoCredentialsError: no usable credentials
        """
        if not credentials and resolver is None:
            raise NoCredentialsError("No credentials configured")

        self.config = config or DiscoveryConfig()
        self.logger = logger or module_logger
        self.events = event_emitter or EventEmitter()
        self.progress_callback = progress_callback

        self.resolver = resolver or CredentialResolver(
            credentials,
            self.config,
            client_factory=client_factory,
            output_callback=self._session_output,
        )

        if parser is None:
            parser = NeighborParser(first_match_wins=self.config.first_match_wins)
            parser.load_templates_from_directory(
                self.config.discovery_commands, self.config.resolve_template_dir()
            )
        self.parser = parser
        self.collector = NeighborCollector(self.parser, self.config)

        self.writer = TopologyWriter(self.config.topology_path, self.config.graph_path)
        self._executor = ThreadPoolExecutor(max_workers=self.config.max_workers)

        self.table = DeviceTable()
        self._exclude_patterns: List[str] = []
        self._started_at: Optional[datetime] = None

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _session_output(self, line: str) -> None:
        self.logger.debug(f"[session] {line}")

    def _progress(self, message: str) -> None:
        self.logger.info(message)
        if self.progress_callback:
            try:
                self.progress_callback(message)
            except Exception as e:
                self.logger.warning(f"Progress callback error: {e}")

    def _log(self, message: str, level: LogLevel = LogLevel.INFO, device: str = "") -> None:
        """Emit log message event."""
        self.events.log(message, level, device)

    async def _run(self, func: Callable, *args, **kwargs) -> Any:
        """Run a blocking call in the executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args, **kwargs))

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    async def _login(self, ip: str) -> Optional[CredentialMatch]:
        """
        try_credentials in the executor.

        If the device times out mid-login, the remaining credentials are
        skipped and a session that still authenticates is disconnected.
        """
        abandoned = threading.Event()
        future = self._executor.submit(self.resolver.try_credentials, ip, abandoned)
        try:
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            abandoned.set()
            future.add_done_callback(_release_abandoned_session)
            raise

    async def _save_snapshot(self) -> None:
        await self.writer.save(self.table, self._started_at)

    # =========================================================================
    # Crawl
    # =========================================================================

    async def crawl(
        self,
        seeds: Sequence[SeedDevice],
        max_hops: Optional[int] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
    ) -> DiscoveryResult:
        """
        Breadth-first discovery from seed devices.

        Args:
            seeds: Starting devices (hop 0)
            max_hops: Maximum hop count (config default if None)
            exclude_patterns: Hostname substrings never crawled

        Returns:
            DiscoveryResult wrapping the final device table
        """
        max_hops = self.config.max_hops if max_hops is None else max_hops
        if exclude_patterns is None:
            exclude_patterns = self.config.exclude_patterns
        self._exclude_patterns = [p for p in exclude_patterns if p]

        self.table = DeviceTable()
        self._started_at = datetime.now()
        result = DiscoveryResult(
            table=self.table,
            seeds=[seed.ip_address for seed in seeds],
            max_hops=max_hops,
            started_at=self._started_at,
        )

        self.events.crawl_started(result.seeds, max_hops, self._exclude_patterns)
        self._progress(f"Starting discovery from {len(seeds)} seed(s), max hops {max_hops}")

        hops: Dict[int, List[int]] = {0: []}
        for seed in seeds:
            if seed.ip_address in self.table:
                self.logger.warning(f"Duplicate seed {seed.ip_address} ignored")
                continue
            device = DiscoveredDevice(
                ip_address=seed.ip_address,
                hostname=seed.hostname,
                hop_count=0,
            )
            hops[0].append(self.table.add(device))

        current_hop = 0
        while current_hop <= max_hops and hops.get(current_hop):
            device_ids = hops[current_hop]
            next_ids = hops.setdefault(current_hop + 1, [])

            self.events.hop_started(current_hop, len(device_ids))
            self._progress(f"Hop {current_hop}: processing {len(device_ids)} device(s)")

            hop_ok = 0
            hop_failed = 0
            for device_id in device_ids:
                device = self.table.get(device_id)
                if device.visited or device.failed:
                    continue

                await self._process_device(device, current_hop, max_hops, next_ids)
                if device.failed:
                    hop_failed += 1
                elif device.visited:
                    hop_ok += 1

                await self._save_snapshot()

            self.events.hop_complete(current_hop, hop_ok, hop_failed, len(next_ids))

            if not next_ids:
                self.logger.info(f"No devices queued beyond hop {current_hop}")
                break
            current_hop += 1

        self._post_process()

        result.completed_at = datetime.now()
        await self._save_snapshot()
        result.topology_file = str(self.config.topology_path)
        result.graph_file = str(self.config.graph_path)

        self.events.crawl_complete(
            result.duration_seconds,
            topology_file=result.topology_file,
            graph_file=result.graph_file,
        )
        self._progress(
            f"Discovery complete: {result.successful} succeeded, "
            f"{result.failed} failed in {result.duration_seconds:.1f}s"
        )
        return result

    async def _process_device(self, device: DiscoveredDevice, hop: int, max_hops: int,
                              next_ids: List[int]) -> None:
        """Reachability check, then the timed workflow."""
        self.events.device_started(device.ip_address, hop)
        started = time.monotonic()

        reachable = await self._validate_reachability(device)
        if not reachable:
            self._fail(device, "Device unreachable via TCP", ReachabilityStatus.UNREACHABLE)
            return

        try:
            await self._discover_with_timeout(device, hop, max_hops, next_ids)
        except DiscoveryTimeoutError as e:
            device.mark_failed(str(e), ReachabilityStatus.REACHABLE)
            self.table.mark_failed(device)
            self.logger.error(str(e))

        if device.failed:
            self.events.device_failed(device.ip_address, device.error_msg or "", hop)
        elif device.visited:
            self.events.device_complete(
                device.ip_address,
                device.hostname,
                len(device.neighbors),
                (time.monotonic() - started) * 1000,
                device.successful_credential or "",
                hop,
            )

    def _fail(self, device: DiscoveredDevice, error: str,
              reachability: Optional[ReachabilityStatus] = None) -> None:
        device.mark_failed(error, reachability)
        self.table.mark_failed(device)
        self.logger.warning(f"{device.ip_address}: {error}")
        self.events.device_failed(device.ip_address, error, device.hop_count)

    async def _validate_reachability(self, device: DiscoveredDevice) -> bool:
        """
        TCP probe; on failure resolve the hostname and re-key to the
        answer if that address is reachable.
        """
        if await self._run(self.resolver.probe, device.ip_address, self.config.ssh_port,
                           self.config.device_probe_timeout):
            device.reachability_status = ReachabilityStatus.REACHABLE
            return True

        if not is_resolvable_name(device.hostname):
            return False

        resolved = await self._run(self.resolver.resolve, device.hostname)
        if not resolved or resolved == device.ip_address:
            return False

        if not await self._run(self.resolver.probe, resolved, self.config.ssh_port,
                               self.config.device_probe_timeout):
            self.logger.info(f"{device.hostname} resolves to {resolved}, also unreachable")
            return False

        old_ip = device.ip_address
        if not self.table.rekey(device, resolved):
            self.logger.warning(f"{device.hostname}: {resolved} already belongs to another device")
            return False

        self.logger.info(f"Re-keyed {device.hostname} from {old_ip} to {resolved}")
        self._log(f"{device.hostname}: using DNS address {resolved}", LogLevel.INFO, old_ip)
        device.reachability_status = ReachabilityStatus.REACHABLE
        return True

    async def _discover_with_timeout(self, device: DiscoveredDevice, hop: int, max_hops: int,
                                     next_ids: List[int]) -> None:
        try:
            await asyncio.wait_for(
                self._discover_device(device, hop, max_hops, next_ids),
                timeout=self.config.discovery_timeout,
            )
        except asyncio.TimeoutError:
            raise DiscoveryTimeoutError(f"Discovery timeout for {device.ip_address}") from None

    # =========================================================================
    # Per-device workflow
    # =========================================================================

    async def _discover_device(self, device: DiscoveredDevice, hop: int, max_hops: int,
                               next_ids: List[int]) -> None:
        ip = device.ip_address
        if device.visited or ip in self.table.visited_ips:
            self.logger.debug(f"{ip} already visited")
            return
        if device.hostname and device.hostname in self.table.visited_hostnames:
            self.logger.info(f"{device.hostname} already visited under another address")
            self.table.mark_visited(device)
            return

        self.table.mark_visited(device)
        self._progress(f"Discovering {ip} (hop {hop})")

        client = None
        try:
            match = await self._login(ip)
            if match is None:
                device.mark_failed("No valid credentials", ReachabilityStatus.UNREACHABLE)
                self.table.mark_failed(device)
                return

            client = match.client
            device.successful_credential = match.credential.username
            device.reachability_status = ReachabilityStatus.REACHABLE

            await self._run(client.create_shell)
            prompt = await self._run(self.collector.detect_prompt, client)
            device.prompt = prompt

            if not device.hostname or device.hostname.startswith('unknown-'):
                device.hostname = extract_hostname_from_prompt(prompt) or device.hostname
            if device.hostname:
                self.table.visited_hostnames.add(device.hostname)

            await self._run(self.collector.disable_pagination, client, prompt)

            info = await self._run(self.collector.run_device_info_commands, client, prompt)
            device.serial_number = info.serial_number or device.serial_number
            device.model = info.model or device.model
            device.software_version = info.software_version or device.software_version
            device.device_type = info.vendor
            device.raw_data.update(info.raw_output)
            if not device.hostname and info.hostname:
                device.hostname = info.hostname
                self.table.visited_hostnames.add(info.hostname)

            if hop >= max_hops:
                self.logger.debug(f"{ip} at hop limit, skipping neighbor commands")
            else:
                outputs = await self._run(self.collector.run_discovery_commands, client, prompt)
                device.raw_data.update(outputs)
                neighbors = self.collector.parse_neighbors(outputs)
                await self._process_neighbors(device, neighbors, hop, next_ids)

            if not device.hostname:
                device.hostname = f"unknown-{ip}"
            device.last_update = datetime.now()

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Discovery of {ip} failed: {e}")
            device.mark_failed(str(e))
            self.table.mark_failed(device)
        finally:
            if client is not None:
                await self._run(client.disconnect)

    # =========================================================================
    # Neighbors
    # =========================================================================

    async def _process_neighbors(self, device: DiscoveredDevice,
                                 neighbors: List[Dict[str, Any]], hop: int,
                                 next_ids: List[int]) -> None:
        """Queue reachable new neighbors and record links both ways."""
        for record in neighbors:
            neighbor_ip = probe_field(record, NeighborField.IP)
            neighbor_name = probe_field(record, NeighborField.HOSTNAME)

            if not neighbor_ip or not is_ip_address(neighbor_ip):
                self.events.neighbor_skipped(neighbor_name or "?", "no IP address",
                                             device.ip_address)
                continue
            if neighbor_ip in (device.ip_address, device.original_ip):
                continue

            device.neighbors.append(record)

            link_ip = neighbor_ip
            pattern = matching_exclusion(neighbor_name, self._exclude_patterns)
            if pattern:
                self.events.device_excluded(neighbor_name, pattern)
                self.logger.info(f"Excluding {neighbor_name} (matches '{pattern}')")
            else:
                queued_ip = await self._queue_neighbor(device, record, neighbor_ip,
                                                       neighbor_name, hop, next_ids)
                link_ip = queued_ip or neighbor_ip

            self._record_link(device, record, link_ip)

    async def _queue_neighbor(self, device: DiscoveredDevice, record: Dict[str, Any],
                              neighbor_ip: str, neighbor_name: Optional[str], hop: int,
                              next_ids: List[int]) -> Optional[str]:
        """Add an unseen, reachable neighbor to the next hop. Returns its address."""
        if self.table.is_known(neighbor_ip) or self.table.find(neighbor_ip):
            return None
        if neighbor_name and neighbor_name in self.table.visited_hostnames:
            self.events.neighbor_skipped(neighbor_name, "hostname already visited",
                                         device.ip_address)
            return None

        target_ip = await self._reachable_neighbor_address(neighbor_ip, neighbor_name)
        if target_ip is None:
            self.events.neighbor_skipped(neighbor_name or neighbor_ip, "unreachable",
                                         device.ip_address)
            return None
        if target_ip != neighbor_ip and self.table.is_known(target_ip):
            return None

        new_device = DiscoveredDevice(
            ip_address=target_ip,
            hostname=neighbor_name or "",
            platform=probe_field(record, NeighborField.PLATFORM),
            capabilities=probe_capabilities(record),
            management_ip=probe_field(record, NeighborField.MANAGEMENT_IP),
            parent=device.ip_address,
            hop_count=hop + 1,
            original_ip=neighbor_ip if target_ip != neighbor_ip else None,
        )
        next_ids.append(self.table.add(new_device))
        self.events.neighbor_queued(neighbor_name or target_ip, target_ip,
                                    device.label, hop + 1)
        return target_ip

    async def _reachable_neighbor_address(self, ip: str,
                                          hostname: Optional[str]) -> Optional[str]:
        """ip if it answers on the SSH port, else a reachable DNS answer."""
        if await self._run(self.resolver.probe, ip, self.config.ssh_port,
                           self.config.neighbor_probe_timeout):
            return ip
        if not is_resolvable_name(hostname):
            return None

        resolved = await self._run(self.resolver.resolve, hostname)
        if not resolved or resolved == ip:
            return None
        if await self._run(self.resolver.probe, resolved, self.config.ssh_port,
                           self.config.neighbor_probe_timeout):
            self.logger.info(f"Neighbor {hostname}: {ip} unreachable, using {resolved}")
            return resolved
        return None

    def _record_link(self, device: DiscoveredDevice, record: Dict[str, Any],
                     neighbor_ip: str) -> None:
        """Interface bookkeeping on this device and, if known, the peer."""
        raw_local = probe_field(record, NeighborField.LOCAL_INTERFACE)
        raw_remote = probe_field(record, NeighborField.REMOTE_INTERFACE)
        if not raw_local:
            return

        local_if, remote_if = InterfaceNormalizer.normalize_pair(raw_local, raw_remote)
        if remote_if == "unknown":
            remote_if = None
        command = record.get('discovered_via')
        protocol = NeighborProtocol.from_command(command).value

        peer = self.table.find(neighbor_ip)
        if peer is not None and peer is not device:
            neighbor_ip = peer.ip_address

        device.add_local_link(local_if, LocalInterfaceLink(
            connected_to=neighbor_ip,
            remote_interface=remote_if,
            discovered_via=command,
        ))
        device.add_interface(InterfaceRecord(
            name=local_if,
            connected_to=neighbor_ip,
            remote_interface=remote_if,
            type=protocol,
        ))

        if peer is None or peer is device or not remote_if:
            return
        peer.add_local_link(remote_if, LocalInterfaceLink(
            connected_to=device.ip_address,
            remote_interface=local_if,
            discovered_via=command,
        ), overwrite=False)
        peer.add_interface(InterfaceRecord(
            name=remote_if,
            connected_to=device.ip_address,
            remote_interface=local_if,
            type=protocol,
        ))

    # =========================================================================
    # Post-processing
    # =========================================================================

    def _post_process(self) -> None:
        """Backfill hostname/platform from what neighbors reported."""
        hostnames: Dict[str, str] = {}
        platforms: Dict[str, str] = {}
        for device in self.table.devices():
            for record in device.neighbors:
                ip = probe_field(record, NeighborField.IP)
                if not ip:
                    continue
                name = probe_field(record, NeighborField.HOSTNAME)
                platform = probe_field(record, NeighborField.PLATFORM)
                if name:
                    hostnames.setdefault(ip, name)
                if platform:
                    platforms.setdefault(ip, platform)

        for device in self.table.devices():
            keys = [device.ip_address]
            if device.original_ip:
                keys.append(device.original_ip)
            if not device.hostname or device.hostname.startswith('unknown-'):
                for key in keys:
                    if key in hostnames:
                        device.hostname = hostnames[key]
                        break
            if not device.platform:
                for key in keys:
                    if key in platforms:
                        device.platform = platforms[key]
                        break
