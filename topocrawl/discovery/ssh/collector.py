"""
TopoCrawl SSH Collector - Per-device command set.

Path: topocrawl/discovery/ssh/collector.py

Runs the fixed interaction pattern against an open shell: detect the
prompt, disable paging, pull device info, run CDP/LLDP neighbor commands
and hand their output to the parser. Each step is a separate blocking
call so the async engine can suspend between them.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ...exceptions import CommandTimeoutError, PromptDetectionError
from ..config import DiscoveryConfig
from ..models import DeviceVendor
from .parsers import NeighborParser, OutputCleaner

logger = logging.getLogger(__name__)


# Output that means the command was rejected
ERROR_INDICATORS = (
    'invalid input',
    'incomplete command',
    'unknown command',
    '% invalid',
    '% ambiguous command',
)

# Output that means the protocol is off on this device
PROTOCOL_DISABLED_MESSAGES = (
    'not enabled',
    'not running',
    'is disabled',
    'not configured',
)

NEIGHBOR_COMMAND_MARKERS = ('cdp neighbor', 'lldp neighbor')

FALLBACK_PROMPT = '#'

SERIAL_PATTERN = re.compile(r'(?:Processor board ID|Serial Number)[:\s]+(\S+)', re.IGNORECASE)
MODEL_PATTERN = re.compile(r'Model number[:\s]+([^\n]+)', re.IGNORECASE)
VERSION_PATTERN = re.compile(r'Version\s+([^,\s]+)', re.IGNORECASE)
HOSTNAME_PATTERN = re.compile(r'^hostname\s+(\S+)', re.IGNORECASE | re.MULTILINE)


class OutputStatus:
    OK = "ok"
    ERROR = "error"
    DISABLED = "disabled"


def classify_output(output: str) -> str:
    """ok | error | disabled"""
    lowered = output.lower()
    if any(indicator in lowered for indicator in ERROR_INDICATORS):
        return OutputStatus.ERROR
    if any(message in lowered for message in PROTOCOL_DISABLED_MESSAGES):
        return OutputStatus.DISABLED
    return OutputStatus.OK


def detect_vendor_from_output(output: str) -> DeviceVendor:
    """Detect vendor from CLI output (show version)."""
    output_lower = output.lower()

    patterns = {
        DeviceVendor.ARISTA: ['arista', 'eos'],
        DeviceVendor.CISCO: ['cisco', 'ios', 'nx-os', 'asa'],
        DeviceVendor.JUNIPER: ['juniper', 'junos', 'srx', 'qfx'],
        DeviceVendor.PALOALTO: ['palo alto', 'pan-os'],
        DeviceVendor.FORTINET: ['fortinet', 'fortigate', 'fortios'],
        DeviceVendor.HUAWEI: ['huawei', 'vrp'],
        DeviceVendor.HP: ['hewlett', 'procurve', 'aruba', 'comware'],
        DeviceVendor.LINUX: ['linux', 'ubuntu', 'debian', 'centos', 'red hat'],
    }

    for vendor, keywords in patterns.items():
        if any(kw in output_lower for kw in keywords):
            return vendor

    return DeviceVendor.UNKNOWN


def extract_hostname_from_prompt(prompt: Optional[str]) -> Optional[str]:
    """'core-sw1(config)#' -> 'core-sw1'"""
    if not prompt:
        return None
    hostname = re.sub(r'[>#]', '', prompt).split('(')[0].strip()
    # user@host$ shells
    if '@' in hostname:
        hostname = hostname.split('@', 1)[1]
    hostname = hostname.rstrip('$%:').strip()
    return hostname or None


@dataclass
class DeviceInfo:
    """Inventory fields pulled from device-info command output."""
    serial_number: Optional[str] = None
    model: Optional[str] = None
    software_version: Optional[str] = None
    hostname: Optional[str] = None
    vendor: DeviceVendor = DeviceVendor.UNKNOWN
    raw_output: Dict[str, str] = field(default_factory=dict)


def extract_device_info(outputs: Dict[str, str]) -> DeviceInfo:
    """Serial, model, version, vendor and configured hostname."""
    info = DeviceInfo(raw_output=dict(outputs))
    for raw in outputs.values():
        output = OutputCleaner.clean(raw)
        if info.serial_number is None:
            match = SERIAL_PATTERN.search(output)
            if match:
                info.serial_number = match.group(1)
        if info.model is None:
            match = MODEL_PATTERN.search(output)
            if match:
                info.model = match.group(1).strip()
        if info.software_version is None:
            match = VERSION_PATTERN.search(output)
            if match:
                info.software_version = match.group(1)
        if info.hostname is None:
            match = HOSTNAME_PATTERN.search(output)
            if match:
                info.hostname = match.group(1)
        if info.vendor == DeviceVendor.UNKNOWN:
            info.vendor = detect_vendor_from_output(output)
    return info


class NeighborCollector:
    """
    Drives one open shell through the discovery command set.

    Example:
        collector = NeighborCollector(parser, config)
        prompt = collector.detect_prompt(client)
        collector.disable_pagination(client, prompt)
        outputs = collector.run_discovery_commands(client, prompt)
        records = collector.parse_neighbors(outputs)
    """

    def __init__(self, parser: NeighborParser, config: Optional[DiscoveryConfig] = None):
        self.parser = parser
        self.config = config or DiscoveryConfig()

    def detect_prompt(self, client: Any) -> str:
        """Prompt from the session, '#' if none can be found."""
        try:
            return client.find_prompt(
                client.output_buffer,
                attempts=self.config.prompt_attempts,
                timeout=self.config.prompt_timeout,
            )
        except PromptDetectionError as e:
            logger.warning(f"{e}; falling back to '{FALLBACK_PROMPT}'")
            return FALLBACK_PROMPT

    def disable_pagination(self, client: Any, prompt: str) -> Optional[str]:
        """
        Try each paging command until one returns the prompt cleanly.

        Returns the command that worked, or None (logged, not raised).
        """
        for command in self.config.pagination_commands:
            try:
                output = client.execute_command(
                    command, prompt,
                    timeout=self.config.pagination_timeout,
                    fallback_on_timeout=False,
                )
            except CommandTimeoutError:
                logger.debug(f"Pagination command '{command}' timed out on {client.host}")
                continue

            if classify_output(output) == OutputStatus.ERROR:
                logger.debug(f"Pagination command '{command}' rejected by {client.host}")
                continue

            logger.debug(f"Pagination disabled on {client.host} with '{command}'")
            return command

        logger.warning(f"Could not disable pagination on {client.host}")
        return None

    def _run_commands(self, client: Any, prompt: str, commands: Sequence[str],
                      timeout: float) -> Dict[str, str]:
        outputs: Dict[str, str] = {}
        for command in commands:
            try:
                output = client.execute_command(command, prompt, timeout=timeout)
            except CommandTimeoutError as e:
                logger.warning(f"{client.host}: {e}")
                continue

            status = classify_output(output)
            if status == OutputStatus.ERROR:
                logger.debug(f"{client.host} rejected '{command}'")
                continue
            if status == OutputStatus.DISABLED:
                logger.info(f"{client.host}: protocol disabled for '{command}'")
                continue
            outputs[command] = output
        return outputs

    def run_device_info_commands(self, client: Any, prompt: str) -> DeviceInfo:
        outputs = self._run_commands(
            client, prompt, self.config.device_info_commands,
            self.config.info_command_timeout,
        )
        return extract_device_info(outputs)

    def run_discovery_commands(self, client: Any, prompt: str) -> Dict[str, str]:
        """Neighbor command -> raw output, skipping rejected/disabled ones."""
        return self._run_commands(
            client, prompt, self.config.discovery_commands,
            self.config.discovery_command_timeout,
        )

    def parse_neighbors(self, outputs: Dict[str, str]) -> List[Dict[str, Any]]:
        """Parse neighbor command output; each record gets discovered_via."""
        neighbors: List[Dict[str, Any]] = []
        for command, output in outputs.items():
            if not any(marker in command.lower() for marker in NEIGHBOR_COMMAND_MARKERS):
                continue
            records = self.parser.parse(output)
            logger.debug(f"'{command}' yielded {len(records)} neighbor records")
            for record in records:
                record = dict(record)
                record['discovered_via'] = command
                neighbors.append(record)
        return neighbors
