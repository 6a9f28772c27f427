"""
TopoCrawl - Discovery Module Entry Point.

Allows running discovery as a module:
    python -m topocrawl.discovery --seed core-sw1,10.0.0.1
"""

import sys

from topocrawl.discovery.cli import main

if __name__ == '__main__':
    sys.exit(main())
