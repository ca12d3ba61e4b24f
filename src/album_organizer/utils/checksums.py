"""
File checksum helpers used for content hashing and copy verification.
"""

import hashlib
from typing import Iterable

from ..core.constants import CHECKSUM_CHUNK_SIZE


def file_checksum(file_path: str, algorithm: str = 'sha256',
                  chunk_size: int = CHECKSUM_CHUNK_SIZE) -> str:
    """Calculate a file checksum with chunked reads"""
    if algorithm == 'md5':
        hasher = hashlib.md5()
    elif algorithm == 'sha256':
        hasher = hashlib.sha256()
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    with open(file_path, 'rb') as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


def combined_checksum(checksums: Iterable[str]) -> str:
    """Order-independent digest over a set of file checksums"""
    hasher = hashlib.sha256()
    for checksum in sorted(checksums):
        hasher.update(checksum.encode('ascii'))
        hasher.update(b'\n')
    return hasher.hexdigest()
