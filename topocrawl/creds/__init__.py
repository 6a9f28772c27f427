"""
TopoCrawl credentials.

Usage:
    from topocrawl.creds import load_credentials

    credentials = load_credentials("creds.json")
    for cred in credentials:  # ascending priority
        print(cred.username, cred.auth_methods)
"""

from .loader import load_credentials
from .models import Credential, sort_by_priority

__all__ = [
    'Credential',
    'load_credentials',
    'sort_by_priority',
]
