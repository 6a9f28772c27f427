"""Crawl scenarios against the fake network."""

import asyncio
import json
import time

import pytest

from topocrawl.creds.models import Credential
from topocrawl.discovery.config import DiscoveryConfig
from topocrawl.discovery.engine import DiscoveryEngine, matching_exclusion
from topocrawl.discovery.events import EventEmitter, EventType
from topocrawl.discovery.models import ReachabilityStatus, SeedDevice
from topocrawl.exceptions import NoCredentialsError

from conftest import cdp_entry, cdp_output

CDP = 'show cdp neighbors detail'


def crawl(engine, seeds, **kwargs):
    return asyncio.run(engine.crawl(seeds, **kwargs))


def test_single_hop_scenario(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '10.0.0.2',
                                  'GigabitEthernet0/1', 'GigabitEthernet0/2')),
    })
    network.add('10.0.0.2', 'dist-sw2#')

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=1)

    table = result.table
    assert len(table) == 2
    seed = table.get_by_ip('10.0.0.1')
    peer = table.get_by_ip('10.0.0.2')
    assert seed.hop_count == 0
    assert peer.hop_count == 1
    assert peer.parent == '10.0.0.1'
    assert seed.hostname == 'core-sw1'
    assert peer.platform == 'cisco WS-C3850-24T'

    assert seed.local_interfaces['Gi0/1'].connected_to == '10.0.0.2'
    assert seed.local_interfaces['Gi0/1'].remote_interface == 'Gi0/2'
    assert peer.local_interfaces['Gi0/2'].connected_to == '10.0.0.1'
    assert peer.local_interfaces['Gi0/2'].remote_interface == 'Gi0/1'

    assert result.successful == 2
    assert result.failed == 0


def test_device_at_hop_limit_skips_neighbor_commands(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2')),
    })
    network.add('10.0.0.2', 'dist-sw2#')

    crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=1)

    assert CDP in network.commands_for('10.0.0.1')
    assert CDP not in network.commands_for('10.0.0.2')
    assert 'show version' in network.commands_for('10.0.0.2')


def test_max_hops_zero_only_seeds(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2')),
    })
    network.add('10.0.0.2', 'dist-sw2#')

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=0)

    assert [d.ip_address for d in result.devices] == ['10.0.0.1']
    assert not any('neighbor' in c for c in network.commands_for('10.0.0.1'))


def test_unreachable_seed_rekeyed_through_dns(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#')
    network.dns['core-sw1'] = '10.0.0.1'

    result = crawl(make_engine(), [SeedDevice('10.9.9.9', 'core-sw1')], max_hops=0)

    table = result.table
    assert len(table) == 1
    device = table.get_by_ip('10.0.0.1')
    assert device is not None
    assert '10.9.9.9' not in table
    assert device.original_ip == '10.9.9.9'
    assert not device.failed
    assert device.visited
    assert '10.0.0.1' in table.visited_ips
    assert '10.9.9.9' not in table.visited_ips
    assert table.find('10.9.9.9') is device


def test_unreachable_seed_without_dns_fails(network, make_engine):
    result = crawl(make_engine(), [SeedDevice('10.9.9.9', 'ghost')], max_hops=0)

    device = result.table.get_by_ip('10.9.9.9')
    assert device.failed
    assert device.error_msg == 'Device unreachable via TCP'
    assert device.reachability_status == ReachabilityStatus.UNREACHABLE


def test_excluded_neighbor_never_added(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(
            cdp_entry('SEP00AABBCCDDEE', '10.0.0.50', 'Gi0/5', 'Port 1',
                      platform='Cisco IP Phone 8841'),
            cdp_entry('dist-sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2'),
        ),
    })
    network.add('10.0.0.50', 'phone>')
    network.add('10.0.0.2', 'dist-sw2#')

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=2,
                   exclude_patterns=['sep'])

    assert '10.0.0.50' not in result.table
    assert '10.0.0.2' in result.table
    assert network.commands_for('10.0.0.50') == []
    assert ('10.0.0.50', 22, 1.0) not in network.probes


def test_unreachable_neighbor_not_queued(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2')),
    })

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=2)

    assert len(result.table) == 1
    seed = result.table.get_by_ip('10.0.0.1')
    assert seed.local_interfaces['Gi0/1'].connected_to == '10.0.0.2'


def test_neighbor_queued_under_dns_address(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '172.16.0.2', 'Gi0/1', 'Gi0/2')),
    })
    network.add('10.0.0.2', 'dist-sw2#')
    network.dns['dist-sw2'] = '10.0.0.2'

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=1)

    peer = result.table.get_by_ip('10.0.0.2')
    assert peer is not None
    assert peer.original_ip == '172.16.0.2'
    assert '172.16.0.2' not in result.table
    assert peer.visited


def test_no_device_visited_twice(network, make_engine):
    # Triangle: every device reports the other two
    network.add('10.0.0.1', 'a#', {CDP: cdp_output(
        cdp_entry('b', '10.0.0.2', 'Gi0/1', 'Gi0/1'),
        cdp_entry('c', '10.0.0.3', 'Gi0/2', 'Gi0/1'),
    )})
    network.add('10.0.0.2', 'b#', {CDP: cdp_output(
        cdp_entry('a', '10.0.0.1', 'Gi0/1', 'Gi0/1'),
        cdp_entry('c', '10.0.0.3', 'Gi0/2', 'Gi0/2'),
    )})
    network.add('10.0.0.3', 'c#', {CDP: cdp_output(
        cdp_entry('a', '10.0.0.1', 'Gi0/1', 'Gi0/2'),
        cdp_entry('b', '10.0.0.2', 'Gi0/2', 'Gi0/2'),
    )})

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=3)

    assert len(result.table) == 3
    connected = [s.host for s in network.sessions if s.connected]
    assert sorted(connected) == ['10.0.0.1', '10.0.0.2', '10.0.0.3']
    for device in result.devices:
        if device.ip_address != '10.0.0.1':
            assert result.table.get_by_ip(device.parent).hop_count == device.hop_count - 1


def test_bad_credentials_mark_failed(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', password='other')

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=0)

    device = result.table.get_by_ip('10.0.0.1')
    assert device.failed
    assert device.error_msg == 'No valid credentials'
    assert all(s.disconnected for s in network.sessions)


def test_discovery_timeout_marks_failed(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', hang_on='show version')

    engine = make_engine(discovery_timeout=0.2)
    result = crawl(engine, [SeedDevice('10.0.0.1')], max_hops=0)

    device = result.table.get_by_ip('10.0.0.1')
    assert device.failed
    assert device.error_msg == 'Discovery timeout for 10.0.0.1'
    assert network.sessions[0].disconnected


def wait_for_sessions(sessions, predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline and not all(predicate(s) for s in sessions):
        time.sleep(0.05)


def test_timeout_during_login_closes_late_session(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', login_delay=0.6)

    result = crawl(make_engine(discovery_timeout=0.2), [SeedDevice('10.0.0.1')], max_hops=0)

    device = result.table.get_by_ip('10.0.0.1')
    assert device.error_msg == 'Discovery timeout for 10.0.0.1'
    session = network.sessions[0]
    wait_for_sessions(network.sessions, lambda s: s.disconnected)
    assert session.connected
    assert session.disconnected
    assert session.commands == []


def test_timeout_during_login_skips_remaining_credentials(network, tmp_path):
    network.add('10.0.0.1', 'core-sw1#', login_delay=0.6)
    creds = [Credential('first', password='wrong', priority=0),
             Credential('admin', password='secret', priority=1)]
    engine = DiscoveryEngine(creds, DiscoveryConfig(discovery_timeout=0.2, output_dir=str(tmp_path)),
                             client_factory=network.client_factory)
    try:
        crawl(engine, [SeedDevice('10.0.0.1')], max_hops=0)
        wait_for_sessions(network.sessions, lambda s: s.disconnected)
        time.sleep(0.2)
    finally:
        engine.close()

    assert [s.config.username for s in network.sessions] == ['first']
    assert not network.sessions[0].connected


def test_device_info_extracted(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#')

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=0)

    device = result.table.get_by_ip('10.0.0.1')
    assert device.serial_number == 'FOC1234X0AB'
    assert device.model == 'WS-C3850-24T'
    assert device.software_version == '16.9.4'
    assert device.successful_credential == 'admin'
    assert 'show version' in device.raw_data


def test_snapshot_files_written(network, make_engine, tmp_path):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2')),
    })
    network.add('10.0.0.2', 'dist-sw2#')

    crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=1)

    topology = json.loads((tmp_path / 'network_topology.json').read_text())
    graph = json.loads((tmp_path / 'network_topology_graph.json').read_text())
    assert set(topology['devices']) == {'10.0.0.1', '10.0.0.2'}
    assert topology['metadata']['total_devices'] == 2

    cdp_links = [link for link in graph['links'] if link['type'] == 'cdp']
    assert cdp_links == [{
        'source': '10.0.0.1',
        'target': '10.0.0.2',
        'type': 'cdp',
        'source_interface': 'Gi0/1',
        'target_interface': 'Gi0/2',
    }]


def test_post_process_backfills_platform(network, make_engine):
    network.add('10.0.0.1', 'core-sw1#', {
        CDP: cdp_output(cdp_entry('dist-sw2', '10.0.0.2', 'Gi0/1', 'Gi0/2')),
    })
    network.add('10.0.0.2', 'dist-sw2#', {
        CDP: cdp_output(cdp_entry('core-sw1', '10.0.0.1', 'Gi0/2', 'Gi0/1',
                                  platform='cisco C9300-48P')),
    })

    result = crawl(make_engine(), [SeedDevice('10.0.0.1')], max_hops=2)

    assert result.table.get_by_ip('10.0.0.1').platform == 'cisco C9300-48P'


def test_events_emitted(network, credentials, tmp_path):
    from topocrawl.discovery.config import DiscoveryConfig

    network.add('10.0.0.1', 'core-sw1#')
    emitter = EventEmitter()
    seen = []
    emitter.subscribe(lambda event: seen.append(event.event_type))

    engine = DiscoveryEngine(credentials, DiscoveryConfig(output_dir=str(tmp_path)),
                             client_factory=network.client_factory,
                             event_emitter=emitter)
    try:
        crawl(engine, [SeedDevice('10.0.0.1')], max_hops=0)
    finally:
        engine.close()

    assert seen[0] == EventType.CRAWL_STARTED
    assert EventType.DEVICE_COMPLETE in seen
    assert EventType.CRAWL_COMPLETE in seen
    assert emitter.stats.discovered == 1


def test_progress_callback_receives_messages(network, credentials, tmp_path):
    from topocrawl.discovery.config import DiscoveryConfig

    network.add('10.0.0.1', 'core-sw1#')
    messages = []
    engine = DiscoveryEngine(credentials, DiscoveryConfig(output_dir=str(tmp_path)),
                             client_factory=network.client_factory,
                             progress_callback=messages.append)
    try:
        crawl(engine, [SeedDevice('10.0.0.1')], max_hops=0)
    finally:
        engine.close()

    assert any('10.0.0.1' in m for m in messages)
    assert messages[-1].startswith('Discovery complete')


def test_no_credentials_is_fatal():
    with pytest.raises(NoCredentialsError):
        DiscoveryEngine([])


@pytest.mark.parametrize('hostname,patterns,expected', [
    ('SEP00AA', ['sep'], 'sep'),
    ('core-sw1', ['sep', 'phone'], None),
    ('Lab-AP-01', ['ap-'], 'ap-'),
    (None, ['sep'], None),
])
def test_matching_exclusion(hostname, patterns, expected):
    assert matching_exclusion(hostname, patterns) == expected
