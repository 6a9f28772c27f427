"""
TopoCrawl - Credentials file loader.

The file is a JSON array of credential objects:

    [
      {"username": "admin", "password": "secret", "authPriority": 0},
      {"username": "netops", "keyFile": "~/.ssh/id_rsa", "authPriority": 1}
    ]
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Union

from ..exceptions import CredentialsFileError
from .models import Credential, sort_by_priority

logger = logging.getLogger(__name__)


def load_credentials(path: Union[str, Path]) -> List[Credential]:
    """
    Load and priority-sort credentials.

    Key files are read relative to the credentials file.

    Raises:
        CredentialsFileError: file missing or unreadable, not a JSON array,
            or an entry is invalid
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise CredentialsFileError(f"Credentials file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialsFileError(f"Cannot read credentials file {path}: {e}")
    except json.JSONDecodeError as e:
        raise CredentialsFileError(f"Invalid JSON in credentials file {path}: {e}")

    if not isinstance(data, list):
        raise CredentialsFileError(
            f"Credentials file {path} must contain a JSON array"
        )

    credentials = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise CredentialsFileError(f"Credential #{index} is not an object")
        try:
            credential = Credential.from_dict(entry)
        except (TypeError, ValueError) as e:
            raise CredentialsFileError(f"Credential #{index}: {e}")

        if credential.key_file and not credential.key_content:
            credential = replace(
                credential,
                key_content=_read_key_file(credential.key_file, path.parent),
            )
        credentials.append(credential)

    logger.debug(f"Loaded {len(credentials)} credentials from {path}")
    return sort_by_priority(credentials)


def _read_key_file(key_file: str, base_dir: Path) -> str:
    key_path = Path(key_file).expanduser()
    if not key_path.is_absolute():
        key_path = base_dir / key_path
    try:
        return key_path.read_text(encoding="utf-8")
    except OSError as e:
        raise CredentialsFileError(f"Cannot read key file {key_path}: {e}")
