from topocrawl.discovery.config import DiscoveryConfig
from topocrawl.discovery.models import DeviceVendor
from topocrawl.discovery.ssh.collector import (
    FALLBACK_PROMPT, NeighborCollector, OutputStatus, classify_output,
    detect_vendor_from_output, extract_device_info, extract_hostname_from_prompt,
)
from topocrawl.discovery.ssh.parsers import NeighborParser
from topocrawl.exceptions import CommandTimeoutError, PromptDetectionError
from topocrawl.utils.resource_helper import bundled_template_dir

from conftest import ARISTA_VERSION, SHOW_VERSION, cdp_entry, cdp_output


class ScriptedClient:
    """Answers commands from a dict; raises for anything listed in timeouts."""

    host = '10.0.0.1'
    output_buffer = ''

    def __init__(self, outputs=None, timeouts=(), prompt='core-sw1#'):
        self.outputs = outputs or {}
        self.timeouts = set(timeouts)
        self.prompt = prompt
        self.calls = []

    def find_prompt(self, buffer=None, attempts=3, timeout=5.0):
        if self.prompt is None:
            raise PromptDetectionError("no prompt")
        return self.prompt

    def execute_command(self, command, prompt=None, timeout=30.0, fallback_on_timeout=True):
        self.calls.append((command, timeout, fallback_on_timeout))
        if command in self.timeouts:
            raise CommandTimeoutError(f"Timeout waiting for prompt after command: {command}", command)
        return f"{command}\n{self.outputs.get(command, '')}\n{self.prompt}"


def make_collector():
    return NeighborCollector(NeighborParser(), DiscoveryConfig())


def test_classify_output():
    assert classify_output("% Invalid input detected at '^' marker.") == OutputStatus.ERROR
    assert classify_output("% CDP is not enabled") == OutputStatus.DISABLED
    assert classify_output("Device ID: sw2") == OutputStatus.OK


def test_prompt_fallback():
    assert make_collector().detect_prompt(ScriptedClient(prompt=None)) == FALLBACK_PROMPT


def test_pagination_first_clean_command_wins():
    client = ScriptedClient(
        outputs={'terminal length 0': "% Invalid input detected"},
        timeouts={'terminal pager 0'},
    )
    assert make_collector().disable_pagination(client, 'fw1#') == 'set cli screen-length 0'
    assert [c[0] for c in client.calls] == [
        'terminal length 0', 'terminal pager 0', 'set cli screen-length 0',
    ]
    assert all(c[2] is False for c in client.calls)


def test_pagination_failure_is_not_fatal():
    client = ScriptedClient(timeouts=set(DiscoveryConfig().pagination_commands))
    assert make_collector().disable_pagination(client, '#') is None


def test_discovery_commands_skip_errors_and_disabled():
    client = ScriptedClient(outputs={
        'show cdp neighbors detail': "% CDP is not enabled",
        'show lldp neighbors detail': "% Invalid input detected",
        'show lldp neighbor detail': "Interface Ethernet1 detected 0 LLDP neighbors:",
    })
    outputs = make_collector().run_discovery_commands(client, 'core-sw1#')
    assert list(outputs) == ['show lldp neighbor detail']
    assert all(c[1] == 30.0 for c in client.calls)


def test_parse_neighbors_tags_command():
    parser = NeighborParser()
    parser.load_templates_from_directory(['show cdp neighbors detail'], bundled_template_dir())
    collector = NeighborCollector(parser, DiscoveryConfig())
    outputs = {
        'show cdp neighbors detail': cdp_output(cdp_entry('sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2')),
        'show version': "hostname should-not-parse",
    }
    records = collector.parse_neighbors(outputs)
    assert len(records) == 1
    assert records[0]['NEIGHBOR_NAME'] == 'sw2'
    assert records[0]['discovered_via'] == 'show cdp neighbors detail'


def test_extract_device_info_cisco():
    info = extract_device_info({'show version': f"show version\n{SHOW_VERSION}\ncore-sw1#"})
    assert info.serial_number == 'FOC1234X0AB'
    assert info.model == 'WS-C3850-24T'
    assert info.software_version == '16.9.4'
    assert info.vendor == DeviceVendor.CISCO


def test_extract_device_info_arista():
    info = extract_device_info({'show version': ARISTA_VERSION})
    assert info.serial_number == 'JPE12345678'
    assert info.vendor == DeviceVendor.ARISTA


def test_detect_vendor_unknown():
    assert detect_vendor_from_output("nothing recognizable") == DeviceVendor.UNKNOWN


def test_hostname_from_prompt():
    assert extract_hostname_from_prompt('core-sw1#') == 'core-sw1'
    assert extract_hostname_from_prompt('core-sw1(config-if)#') == 'core-sw1'
    assert extract_hostname_from_prompt('edge-rtr>') == 'edge-rtr'
    assert extract_hostname_from_prompt('admin@fw01$') == 'fw01'
    assert extract_hostname_from_prompt('#') is None
    assert extract_hostname_from_prompt(None) is None
