"""
TopoCrawl - Package resource helper.

Locates data shipped inside the package (TextFSM templates) for both
source checkouts and installed wheels.
"""

from importlib.resources import files
from pathlib import Path


def get_resource_dir(package: str, *parts: str) -> Path:
    """
    Get a filesystem directory for package data.

    Example:
        template_dir = get_resource_dir('topocrawl', 'templates', 'textfsm')
        for template in template_dir.glob('*.textfsm'):
            ...
    """
    traversable = files(package)
    for part in parts:
        traversable = traversable / part

    # Filesystem-backed traversables (editable installs, wheels on disk)
    if hasattr(traversable, '_path'):
        return Path(traversable._path)

    try:
        return Path(str(traversable))
    except Exception:
        raise RuntimeError(
            f"Cannot get directory path for {package}/{'/'.join(parts)}. "
            "Package may be zipped."
        )


def bundled_template_dir() -> Path:
    """Directory of the TextFSM templates shipped with TopoCrawl."""
    return get_resource_dir('topocrawl', 'templates', 'textfsm')
