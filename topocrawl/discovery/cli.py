#!/usr/bin/env python3
"""
TopoCrawl - Discovery CLI.

Command-line interface for the neighbor crawler with structured event output.

Usage:
    # Crawl from one seed
    topocrawl --seed core-sw1,10.0.0.1

    # Several seeds, two hops, skip phones
    topocrawl --seed "core-sw1,10.0.0.1;10.0.0.9" --max-hops 2 --exclude sep,phone

    # Verbose with timestamps
    python -m topocrawl.discovery --seed 10.0.0.1 -v --timestamps
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional, Sequence

from ..creds.loader import load_credentials
from ..exceptions import (
    ConfigError, CredentialsFileError, NoCredentialsError, SeedFormatError,
)
from .config import DiscoveryConfig
from .engine import DiscoveryEngine
from .events import ConsoleEventPrinter, EventEmitter, JsonEventPrinter
from .models import SeedDevice, is_ip_address

COMPLETION_SENTINEL = "DISCOVERY_COMPLETE:SUCCESS"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def parse_seeds(value: str) -> List[SeedDevice]:
    """
    'host1,10.0.0.1;10.0.0.2' -> [SeedDevice('10.0.0.1', 'host1'), SeedDevice('10.0.0.2')]

    Raises:
        SeedFormatError: empty list, or an entry without a valid IP
    """
    seeds = []
    for entry in (value or "").split(';'):
        entry = entry.strip()
        if not entry:
            continue
        if ',' in entry:
            hostname, ip = (part.strip() for part in entry.split(',', 1))
        else:
            hostname, ip = "", entry
        if not is_ip_address(ip):
            raise SeedFormatError(f"Invalid seed '{entry}': expected HOST,IP or IP")
        seeds.append(SeedDevice(ip_address=ip, hostname=hostname))

    if not seeds:
        raise SeedFormatError("At least one seed is required")
    return seeds


def parse_patterns(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [p.strip() for p in value.split(',') if p.strip()]


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='topocrawl',
        description='CDP/LLDP network topology crawler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Single seed, default four hops
  topocrawl --seed core-sw1,10.0.0.1

  # Multiple seeds, bare IPs allowed
  topocrawl --seed "core-sw1,10.0.0.1;10.0.0.9" --max-hops 2

  # Skip phones and access points
  topocrawl --seed 10.0.0.1 --exclude sep,ap-

  # Tunables from a YAML file, output elsewhere
  topocrawl --seed 10.0.0.1 --config crawl.yaml --output-dir ./maps

  # Machine-readable progress
  topocrawl --seed 10.0.0.1 --json-events
        """
    )

    parser.add_argument(
        '--seed',
        required=True,
        help='Seed devices as HOST,IP[;HOST,IP...] (bare IPs accepted)'
    )
    parser.add_argument(
        '--exclude',
        help='Comma-separated hostname substrings to skip (case-insensitive)'
    )
    parser.add_argument(
        '--max-hops',
        type=int,
        dest='max_hops',
        help='Maximum hops from the seeds (default: 4)'
    )
    parser.add_argument(
        '--creds-file', '--creds',
        dest='creds_file',
        default='creds.json',
        help='JSON credentials file (default: creds.json)'
    )
    parser.add_argument(
        '--config',
        help='YAML file with discovery settings'
    )
    parser.add_argument(
        '--output-dir',
        dest='output_dir',
        help='Directory for topology output (default: current directory)'
    )
    parser.add_argument(
        '--template-dir',
        dest='template_dir',
        help='TextFSM template directory (default: $NET_TEXTFSM or bundled)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--json-events',
        action='store_true',
        dest='json_events',
        help='Output events as JSON lines'
    )
    parser.add_argument(
        '--no-color',
        action='store_true',
        dest='no_color',
        help='Disable colored output'
    )
    parser.add_argument(
        '--timestamps',
        action='store_true',
        help='Show timestamps on events'
    )

    return parser


def load_config(args) -> DiscoveryConfig:
    """YAML file (if any) with CLI flags layered on top."""
    config = DiscoveryConfig.from_yaml(args.config) if args.config else DiscoveryConfig()
    return config.merged(
        max_hops=args.max_hops,
        exclude_patterns=parse_patterns(args.exclude),
        output_dir=args.output_dir,
        template_dir=args.template_dir,
    )


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    if not verbose:
        logging.getLogger('paramiko').setLevel(logging.WARNING)


async def cmd_crawl(args, seeds: Sequence[SeedDevice], config: DiscoveryConfig,
                    credentials) -> int:
    """Run the crawl with event-driven output."""
    emitter = EventEmitter()

    if args.json_events:
        json_printer = JsonEventPrinter()
        emitter.subscribe(json_printer.handle_event)
    else:
        console_printer = ConsoleEventPrinter(
            verbose=args.verbose,
            color=not args.no_color,
            show_timestamps=args.timestamps,
        )
        emitter.subscribe(console_printer.handle_event)

    engine = DiscoveryEngine(credentials, config, event_emitter=emitter)
    try:
        await engine.crawl(seeds, config.max_hops, config.exclude_patterns)
    finally:
        engine.close()

    print(COMPLETION_SENTINEL, flush=True)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    # Everything that can reject the run happens before any file is written
    try:
        seeds = parse_seeds(args.seed)
        config = load_config(args)
        credentials = load_credentials(args.creds_file)
        if not credentials:
            raise NoCredentialsError(f"No credentials in {args.creds_file}")
    except (SeedFormatError, ConfigError, CredentialsFileError, NoCredentialsError) as e:
        logger.error(str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(cmd_crawl(args, seeds, config, credentials))
    except KeyboardInterrupt:
        print("\nInterrupted; last snapshot left on disk", file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())
