import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.store import CatalogStore


@pytest.fixture
def store():
    """Returns a CatalogStore on an in-memory database with the schema initialized."""
    s = CatalogStore(':memory:')
    s.connect()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def make_share(tmp_path):
    """Returns a factory that lays out {relative path: bytes} under a fresh share root."""
    def _make(files):
        root = tmp_path / 'share'
        root.mkdir(exist_ok=True)
        for relative, data in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return root
    return _make
