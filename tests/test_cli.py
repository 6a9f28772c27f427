import json

import pytest

from topocrawl.discovery import reachability
from topocrawl.discovery.cli import (
    COMPLETION_SENTINEL, create_parser, load_config, main, parse_patterns, parse_seeds,
)
from topocrawl.discovery.models import SeedDevice
from topocrawl.exceptions import SeedFormatError

from conftest import cdp_entry, cdp_output


def test_parse_seeds():
    assert parse_seeds('core-sw1,10.0.0.1; 10.0.0.2 ;') == [
        SeedDevice('10.0.0.1', 'core-sw1'),
        SeedDevice('10.0.0.2', ''),
    ]


@pytest.mark.parametrize('value', ['', ';;', 'core-sw1', 'core-sw1,not-an-ip', '10.0.0.300'])
def test_parse_seeds_invalid(value):
    with pytest.raises(SeedFormatError):
        parse_seeds(value)


def test_parse_patterns():
    assert parse_patterns(None) is None
    assert parse_patterns('sep, phone,,') == ['sep', 'phone']


def test_flags_override_yaml(tmp_path):
    path = tmp_path / 'crawl.yaml'
    path.write_text("max_hops: 2\nexclude_patterns: [ap-]\n")
    args = create_parser().parse_args([
        '--seed', '10.0.0.1', '--config', str(path), '--max-hops', '1',
        '--output-dir', str(tmp_path),
    ])

    config = load_config(args)

    assert config.max_hops == 1
    assert config.exclude_patterns == ['ap-']
    assert config.output_dir == str(tmp_path)


@pytest.fixture
def creds_file(tmp_path):
    path = tmp_path / 'creds.json'
    path.write_text(json.dumps([{'username': 'admin', 'password': 'secret'}]))
    return path


def test_missing_creds_fails_before_writing(tmp_path, capsys):
    out_dir = tmp_path / 'out'
    code = main(['--seed', '10.0.0.1', '--creds', str(tmp_path / 'missing.json'),
                 '--output-dir', str(out_dir)])
    assert code == 1
    assert not out_dir.exists()
    captured = capsys.readouterr()
    assert 'ERROR' in captured.err
    assert COMPLETION_SENTINEL not in captured.out


def test_empty_creds_fails(tmp_path):
    path = tmp_path / 'creds.json'
    path.write_text('[]')
    assert main(['--seed', '10.0.0.1', '--creds', str(path),
                 '--output-dir', str(tmp_path / 'out')]) == 1
    assert not (tmp_path / 'out').exists()


def test_invalid_seed_fails(tmp_path, creds_file):
    assert main(['--seed', 'core-sw1', '--creds', str(creds_file),
                 '--output-dir', str(tmp_path / 'out')]) == 1
    assert not (tmp_path / 'out').exists()


def test_bad_config_fails(tmp_path, creds_file):
    config = tmp_path / 'crawl.yaml'
    config.write_text("max_hops: -3\n")
    assert main(['--seed', '10.0.0.1', '--creds', str(creds_file),
                 '--config', str(config)]) == 1


def test_crawl_writes_topology(network, monkeypatch, tmp_path, creds_file, capsys):
    monkeypatch.setattr(reachability, 'SSHClient', network.client_factory)
    network.add('10.0.0.1', 'core-sw1#', {
        'show cdp neighbors detail': cdp_output(
            cdp_entry('access-sw2', '10.0.0.2', 'GigabitEthernet1/0/1', 'GigabitEthernet0/24'),
        ),
    })
    network.add('10.0.0.2', 'access-sw2#')
    out_dir = tmp_path / 'out'

    code = main(['--seed', 'core-sw1,10.0.0.1', '--creds', str(creds_file),
                 '--output-dir', str(out_dir), '--max-hops', '1', '--no-color'])

    assert code == 0
    assert capsys.readouterr().out.rstrip().endswith(COMPLETION_SENTINEL)
    topology = json.loads((out_dir / 'network_topology.json').read_text())
    assert set(topology['devices']) == {'10.0.0.1', '10.0.0.2'}
    assert topology['devices']['10.0.0.2']['hostname'] == 'access-sw2'
    graph = json.loads((out_dir / 'network_topology_graph.json').read_text())
    assert any(link['type'] == 'cdp' for link in graph['links'])


def test_json_events_output(network, monkeypatch, tmp_path, creds_file, capsys):
    monkeypatch.setattr(reachability, 'SSHClient', network.client_factory)
    network.add('10.0.0.1', 'core-sw1#')

    code = main(['--seed', '10.0.0.1', '--creds', str(creds_file),
                 '--output-dir', str(tmp_path), '--max-hops', '0', '--json-events'])

    assert code == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[-1] == COMPLETION_SENTINEL
    events = [json.loads(line)['event'] for line in lines[:-1]]
    assert events[0] == 'crawl_started'
    assert events[-1] == 'crawl_complete'
    assert 'device_complete' in events
