"""
winnode/utils/ephemeral_file.py

Provides an async context manager for short-lived credential files (SSH
private keys, known_hosts) kept in `/dev/shm` when available, so they never
touch persistent storage. All files and the directory are removed on exit.
"""

import os
import tempfile
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional

SHM_DIR = "/dev/shm"


@asynccontextmanager
async def ephemeral_manager(
    file_names: List[str],
    *,
    prefix: str = "ephemeral-",
    parent_dir: Optional[str] = None,
) -> AsyncGenerator[Dict[str, str], None]:
    """
    Create one ephemeral directory and yield a path inside it for each name.

    The files themselves are not created; callers write them as needed.

    Args:
        file_names: Names of the files to reserve paths for.
        prefix: Prefix for the ephemeral directory name.
        parent_dir: Where to create the directory. Defaults to `/dev/shm`, or the
            system temp dir if `/dev/shm` does not exist.

    Yields:
        Dict of file name -> ephemeral path.

    Raises:
        ValueError: If no file names are given or a name is repeated.
    """
    if not file_names or len(set(file_names)) != len(file_names):
        raise ValueError("Must provide one or more distinct file names.")

    base = parent_dir or (SHM_DIR if os.path.isdir(SHM_DIR) else None)
    ephemeral_dir = tempfile.mkdtemp(dir=base, prefix=prefix)

    try:
        yield {name: os.path.join(ephemeral_dir, name) for name in file_names}
    finally:
        if os.path.isdir(ephemeral_dir):
            for item in os.listdir(ephemeral_dir):
                item_path = os.path.join(ephemeral_dir, item)
                if os.path.isfile(item_path) or os.path.islink(item_path):
                    os.remove(item_path)
            os.rmdir(ephemeral_dir)
