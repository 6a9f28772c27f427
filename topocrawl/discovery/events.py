"""
TopoCrawl - Discovery Event System.

Structured events emitted by the crawler. The CLI prints them; a host
application can subscribe and drive its own widgets.

Event Flow:
    crawl_started -> hop_started -> device_started ->
    device_complete/device_failed -> neighbor_queued* -> hop_complete ->
    ... -> crawl_complete
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Discovery event types."""
    CRAWL_STARTED = "crawl_started"
    CRAWL_COMPLETE = "crawl_complete"
    HOP_STARTED = "hop_started"
    HOP_COMPLETE = "hop_complete"
    DEVICE_STARTED = "device_started"
    DEVICE_COMPLETE = "device_complete"
    DEVICE_FAILED = "device_failed"
    DEVICE_EXCLUDED = "device_excluded"
    NEIGHBOR_QUEUED = "neighbor_queued"
    NEIGHBOR_SKIPPED = "neighbor_skipped"
    STATS_UPDATED = "stats_updated"
    LOG_MESSAGE = "log_message"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


@dataclass
class DiscoveryStats:
    """Running crawl counters."""
    discovered: int = 0
    failed: int = 0
    queue: int = 0
    total: int = 0
    excluded: int = 0
    skipped: int = 0
    current_hop: int = 0
    max_hops: int = 0
    current_device: str = ""
    status: str = "Ready"

    @property
    def success_rate(self) -> float:
        """Percentage of attempted devices that were discovered."""
        if self.total == 0:
            return 0.0
        return (self.discovered / self.total) * 100


@dataclass
class DiscoveryEvent:
    event_type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return self.data.get("message", "")

    @property
    def target(self) -> str:
        return self.data.get("target", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event': self.event_type.value,
            'timestamp': self.timestamp.isoformat(),
            'data': self.data,
        }


EventCallback = Callable[[DiscoveryEvent], None]


class EventEmitter:
    """
    Fans crawl events out to subscribers and keeps DiscoveryStats current.

    Usage:
        emitter = EventEmitter()
        emitter.subscribe(my_handler)                             # everything
        emitter.subscribe(stats_handler, EventType.STATS_UPDATED)  # one type
    """

    def __init__(self):
        self._listeners: List[Tuple[EventCallback, Optional[EventType]]] = []
        self._stats = DiscoveryStats()

    @property
    def stats(self) -> DiscoveryStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = DiscoveryStats()

    def subscribe(self, callback: EventCallback,
                  event_type: Optional[EventType] = None) -> None:
        self._listeners.append((callback, event_type))

    def unsubscribe(self, callback: EventCallback) -> None:
        self._listeners = [(cb, et) for cb, et in self._listeners if cb != callback]

    def emit(self, event_type: EventType, **data) -> DiscoveryEvent:
        """Deliver to matching listeners. A failing listener is logged and skipped."""
        event = DiscoveryEvent(event_type=event_type, data=data)
        for callback, wanted in self._listeners:
            if wanted is not None and wanted != event_type:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event listener error: {e}")
        return event

    def _publish_stats(self) -> None:
        self.emit(EventType.STATS_UPDATED, **asdict(self._stats))

    def _finish_device(self, succeeded: bool) -> None:
        if succeeded:
            self._stats.discovered += 1
        else:
            self._stats.failed += 1
        self._stats.total += 1
        self._stats.queue = max(0, self._stats.queue - 1)

    # =========================================================================
    # Crawl lifecycle
    # =========================================================================

    def crawl_started(self, seeds: List[str], max_hops: int,
                      exclude_patterns: List[str]) -> None:
        """Resets the counters; seeds count as queued."""
        self.reset_stats()
        self._stats.max_hops = max_hops
        self._stats.queue = len(seeds)
        self._stats.status = "Starting"
        self.emit(EventType.CRAWL_STARTED, seeds=seeds, max_hops=max_hops,
                  exclude_patterns=exclude_patterns)
        self._publish_stats()

    def crawl_complete(self, duration_seconds: float, topology_file: str = "",
                       graph_file: str = "") -> None:
        stats = self._stats
        stats.status = "Complete"
        stats.queue = 0
        self.emit(EventType.CRAWL_COMPLETE, discovered=stats.discovered,
                  failed=stats.failed, total=stats.total, excluded=stats.excluded,
                  duration_seconds=duration_seconds, topology_file=topology_file,
                  graph_file=graph_file)
        self._publish_stats()

    def hop_started(self, hop: int, device_count: int) -> None:
        self._stats.current_hop = hop
        self._stats.status = f"Hop {hop}"
        self.emit(EventType.HOP_STARTED, hop=hop, max_hops=self._stats.max_hops,
                  device_count=device_count)
        self._publish_stats()

    def hop_complete(self, hop: int, discovered: int, failed: int, queued: int) -> None:
        self.emit(EventType.HOP_COMPLETE, hop=hop, discovered=discovered,
                  failed=failed, queued=queued)

    # =========================================================================
    # Devices and neighbors
    # =========================================================================

    def device_started(self, target: str, hop: int) -> None:
        self._stats.current_device = target
        self._stats.status = f"Discovering: {target}"
        self.emit(EventType.DEVICE_STARTED, target=target, hop=hop)
        self._publish_stats()

    def device_complete(self, target: str, hostname: str, neighbor_count: int,
                        duration_ms: float, credential: str, hop: int) -> None:
        self._finish_device(succeeded=True)
        self.emit(EventType.DEVICE_COMPLETE, target=target, hostname=hostname,
                  neighbor_count=neighbor_count, duration_ms=duration_ms,
                  credential=credential, hop=hop)
        self._publish_stats()

    def device_failed(self, target: str, error: str, hop: int) -> None:
        self._finish_device(succeeded=False)
        self.emit(EventType.DEVICE_FAILED, target=target, error=error, hop=hop)
        self._publish_stats()

    def device_excluded(self, hostname: str, pattern: str) -> None:
        self._stats.excluded += 1
        self.emit(EventType.DEVICE_EXCLUDED, hostname=hostname, pattern=pattern)

    def neighbor_queued(self, target: str, ip: str, from_device: str, hop: int) -> None:
        self._stats.queue += 1
        self.emit(EventType.NEIGHBOR_QUEUED, target=target, ip=ip,
                  from_device=from_device, hop=hop)
        self._publish_stats()

    def neighbor_skipped(self, target: str, reason: str, from_device: str) -> None:
        self._stats.skipped += 1
        self.emit(EventType.NEIGHBOR_SKIPPED, target=target, reason=reason,
                  from_device=from_device)

    def log(self, message: str, level: LogLevel = LogLevel.INFO,
            device: str = "") -> None:
        self.emit(EventType.LOG_MESSAGE, message=message, level=level.value, device=device)


# =========================================================================
# Printers (CLI)
# =========================================================================

ANSI = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

LEVEL_STYLES = {
    'debug': ('dim',),
    'warning': ('yellow',),
    'error': ('red',),
    'success': ('green',),
}

MAX_ERROR_WIDTH = 60


class ConsoleEventPrinter:
    """
    Human-readable crawl progress.

    Usage:
        printer = ConsoleEventPrinter(verbose=True, color=True)
        emitter.subscribe(printer.handle_event)
    """

    # Only shown with verbose
    VERBOSE_ONLY = {EventType.DEVICE_STARTED, EventType.HOP_COMPLETE,
                    EventType.NEIGHBOR_SKIPPED}

    def __init__(self, verbose: bool = False, color: bool = True,
                 show_timestamps: bool = False):
        self.verbose = verbose
        self.color = color
        self.show_timestamps = show_timestamps

    def _c(self, text: str, *styles: str) -> str:
        if not self.color or not styles:
            return text
        return "".join(ANSI[s] for s in styles) + text + ANSI["reset"]

    def _banner(self, title: str, rule: str, *styles: str) -> List[str]:
        line = self._c(rule * 60, *styles)
        return ["", line, self._c(title, *styles, "bold"), line]

    def handle_event(self, event: DiscoveryEvent) -> None:
        if event.event_type in self.VERBOSE_ONLY and not self.verbose:
            return
        render = getattr(self, f"_render_{event.event_type.value}", None)
        if render is None:
            return
        lines = render(event.data)
        if not lines:
            return
        stamp = f"[{event.timestamp:%H:%M:%S}] " if self.show_timestamps else ""
        for line in lines:
            print(f"{stamp}{line}" if line else line)

    def _render_crawl_started(self, data: Dict[str, Any]) -> List[str]:
        lines = self._banner("NETWORK DISCOVERY STARTED", "=", "cyan")
        lines += [f"Seeds: {', '.join(data['seeds'])}", f"Max Hops: {data['max_hops']}"]
        if data.get('exclude_patterns'):
            lines.append(f"Exclude: {', '.join(data['exclude_patterns'])}")
        return lines + [""]

    def _render_crawl_complete(self, data: Dict[str, Any]) -> List[str]:
        lines = self._banner("DISCOVERY COMPLETE", "#", "green")
        lines += [
            f"Total Attempted: {data['total']}",
            f"Successful: {self._c(str(data['discovered']), 'green')}",
            f"Failed: {self._c(str(data['failed']), 'red')}",
        ]
        if data.get('excluded'):
            lines.append(f"Excluded: {data['excluded']}")
        lines.append(f"Duration: {data['duration_seconds']:.1f}s")
        for label, key in (("Topology", 'topology_file'), ("Graph", 'graph_file')):
            if data.get(key):
                lines.append(f"{label}: {data[key]}")
        return lines + [""]

    def _render_hop_started(self, data: Dict[str, Any]) -> List[str]:
        return self._banner(
            f"HOP {data['hop']}/{data['max_hops']}: Processing {data['device_count']} devices",
            "=", "blue",
        )

    def _render_hop_complete(self, data: Dict[str, Any]) -> List[str]:
        return [f"  Hop {data['hop']} complete: {data['discovered']} discovered, "
                f"{data['failed']} failed, {data['queued']} queued"]

    def _render_device_started(self, data: Dict[str, Any]) -> List[str]:
        return [f"  Discovering: {data['target']}"]

    def _render_device_complete(self, data: Dict[str, Any]) -> List[str]:
        name = data.get('hostname') or data['target']
        return [f"  {self._c('OK', 'green', 'bold')}: {name} as {data.get('credential', '?')} "
                f"({data.get('neighbor_count', 0)} neighbors, {data.get('duration_ms', 0):.0f}ms)"]

    def _render_device_failed(self, data: Dict[str, Any]) -> List[str]:
        error = data.get('error') or 'Unknown error'
        if len(error) > MAX_ERROR_WIDTH:
            error = error[:MAX_ERROR_WIDTH - 3] + "..."
        return [f"  {self._c('FAILED', 'red', 'bold')}: {data['target']} - {error}"]

    def _render_device_excluded(self, data: Dict[str, Any]) -> List[str]:
        return [f"  {self._c('EXCLUDED', 'yellow')}: {data['hostname']} "
                f"(matches: {data['pattern']})"]

    def _render_neighbor_queued(self, data: Dict[str, Any]) -> List[str]:
        ip = data.get('ip')
        via = f" ({ip})" if ip and ip != data['target'] else ""
        return [f"  {self._c('QUEUED', 'cyan')}: {data['target']}{via}"]

    def _render_neighbor_skipped(self, data: Dict[str, Any]) -> List[str]:
        return [f"  SKIPPED: {data['target']} ({data['reason']})"]

    def _render_log_message(self, data: Dict[str, Any]) -> List[str]:
        level = data.get('level', 'info')
        if level == 'debug' and not self.verbose:
            return []
        prefix = f"[{level.upper()}] " if self.verbose else ""
        return [prefix + self._c(data.get('message', ''), *LEVEL_STYLES.get(level, ()))]


class JsonEventPrinter:
    """One JSON object per event on stdout, for piping into other tools."""

    def __init__(self, include_stats: bool = False):
        self.include_stats = include_stats

    def handle_event(self, event: DiscoveryEvent) -> None:
        if event.event_type == EventType.STATS_UPDATED and not self.include_stats:
            return
        print(json.dumps(event.to_dict(), default=str), flush=True)
