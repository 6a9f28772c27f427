"""
TopoCrawl SSH - Shell sessions, command set, and output parsing.

Path: topocrawl/discovery/ssh/__init__.py

Usage:
    from topocrawl.discovery.ssh import SSHClient, SSHClientConfig, NeighborParser

    client = SSHClient(SSHClientConfig(host="10.0.0.1", username="admin",
                                       password="secret"))
    client.connect()
    client.create_shell()
    prompt = client.find_prompt()
    records = NeighborParser().parse(
        client.execute_command("show cdp neighbors detail", prompt)
    )
"""

from .client import (
    SSHClient,
    SSHClientConfig,
    SessionState,
    filter_ansi_sequences,
    load_private_key,
)
from .collector import (
    DeviceInfo,
    NeighborCollector,
    classify_output,
    detect_vendor_from_output,
    extract_device_info,
    extract_hostname_from_prompt,
)
from .parsers import (
    COMMAND_TEMPLATE_MAP,
    NeighborParser,
    OutputCleaner,
    ParseMethod,
    ParseResult,
    ParseTemplate,
)

__all__ = [
    # Client
    'SSHClient',
    'SSHClientConfig',
    'SessionState',
    'filter_ansi_sequences',
    'load_private_key',
    # Collector
    'DeviceInfo',
    'NeighborCollector',
    'classify_output',
    'detect_vendor_from_output',
    'extract_device_info',
    'extract_hostname_from_prompt',
    # Parsers
    'COMMAND_TEMPLATE_MAP',
    'NeighborParser',
    'OutputCleaner',
    'ParseMethod',
    'ParseResult',
    'ParseTemplate',
]
