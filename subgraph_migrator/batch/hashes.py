# subgraph_migrator/batch/hashes.py

import re
from pathlib import Path
from typing import Iterable, List

from ..core.errors import ConfigurationError, InvalidHashError


DEPLOYMENT_HASH_PATTERN = re.compile(r"^Qm[a-zA-Z0-9]{44}$")


def is_deployment_hash(value: str) -> bool:
    return DEPLOYMENT_HASH_PATTERN.match(value) is not None


def validate_deployment_hash(value: str) -> str:
    if not is_deployment_hash(value):
        raise InvalidHashError(f"Deployment hash doesn't match typical IPFS format (Qm...): {value}")
    return value


def filter_hash_lines(lines: Iterable[str]) -> List[str]:
    """Drop blank lines and ``#`` comments, keep order."""
    hashes = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        hashes.append(stripped)
    return hashes


def load_hash_list(path: Path) -> List[str]:
    try:
        with open(path) as f:
            return filter_hash_lines(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Hash file not found: {path}") from e
