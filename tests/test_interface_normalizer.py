import pytest

from topocrawl.utils.interface_normalizer import InterfaceNormalizer


@pytest.mark.parametrize('raw,short,long', [
    ('GigabitEthernet0/1', 'Gi0/1', 'GigabitEthernet0/1'),
    ('Gi0/1', 'Gi0/1', 'GigabitEthernet0/1'),
    ('gi1/0/24', 'Gi1/0/24', 'GigabitEthernet1/0/24'),
    ('GigabitEthernet 0/1', 'Gi0/1', 'GigabitEthernet0/1'),
    ('TenGigabitEthernet1/1/1', 'Te1/1/1', 'TenGigabitEthernet1/1/1'),
    ('Ethernet1/1', 'Eth1/1', 'Ethernet1/1'),
    ('Et49/1', 'Eth49/1', 'Ethernet49/1'),
    ('HundredGigE1/0/49', 'Hu1/0/49', 'HundredGigabitEthernet1/0/49'),
    ('Port-channel10', 'Po10', 'Port-Channel10'),
    ('port-channel1.100', 'Po1.100', 'Port-Channel1.100'),
    ('Management1', 'Ma1', 'Management1'),
    ('mgmt0', 'Ma0', 'Management0'),
    ('Management0/0.10', 'Ma0/0.10', 'Management0/0.10'),
    ('Wan0/1.100', 'Ma0/1.100', 'Management0/1.100'),
    ('MgmtEth0/RP0/CPU0/0', 'Ma0/0', 'Management0/0'),
    ('Vlan100', 'Vl100', 'Vlan100'),
    ('Loopback0', 'Lo0', 'Loopback0'),
    ('FastEthernet0/24', 'Fa0/24', 'FastEthernet0/24'),
])
def test_normalize_forms(raw, short, long):
    assert InterfaceNormalizer.normalize(raw) == short
    assert InterfaceNormalizer.normalize(raw, use_short_name=False) == long


def test_hostname_prefix_dropped():
    assert InterfaceNormalizer.normalize('core-sw1 Gi0/1') == 'Gi0/1'
    assert InterfaceNormalizer.normalize('leaf01-Ethernet3') == 'Eth3'


@pytest.mark.parametrize('value', [None, '', 'unknown'])
def test_missing_is_unknown(value):
    assert InterfaceNormalizer.normalize(value) == 'unknown'


def test_unrecognized_lowercased():
    assert InterfaceNormalizer.normalize('Serial0/0/0:1') == 'serial0/0/0:1'


@pytest.mark.parametrize('raw', [
    'GigabitEthernet0/1', 'Gi0/1', 'Ethernet1/1', 'Port-channel10',
    'port-channel1-ab2', 'Management1', 'oob_management0', 'Serial0/0',
    'sw1 Te1/1', 'leaf01-Ethernet3', 'Port 1', 'xe-0/0/1', '100GigE1/0/1',
    'Wan0/1.100', 'wan1.5', 'Management0/0.10', 'mgmt1.5.3', 'wan',
])
@pytest.mark.parametrize('use_short_name', [True, False])
def test_idempotent(raw, use_short_name):
    once = InterfaceNormalizer.normalize(raw, use_short_name)
    assert InterfaceNormalizer.normalize(once, use_short_name) == once


def test_normalize_pair():
    assert InterfaceNormalizer.normalize_pair('GigabitEthernet0/1', None) == ('Gi0/1', 'unknown')


@pytest.mark.parametrize('platform,expected', [
    ('Cisco IOS Software, C3850', 'CISCO_IOS'),
    ('cisco N9K-C93180YC-EX (Nexus)', 'CISCO_NXOS'),
    ('Arista Networks EOS', 'ARISTA'),
    ('Juniper', 'UNKNOWN'),
    (None, 'UNKNOWN'),
])
def test_detect_platform(platform, expected):
    assert InterfaceNormalizer.detect_platform(platform) == expected
