"""
TopoCrawl - SSH-driven CDP/LLDP network topology crawler.

Logs into seed switches and routers, collects neighbor tables, and walks
the network breadth-first up to a hop limit, writing a device table and
a node/link graph as JSON.
"""

__version__ = "0.9.0"
