from pathlib import Path

import pytest

from pdfrelay.storage import LocalStorage
from tests.telegram_fakes import _FakeBot, _FakeCompressor


@pytest.fixture
def fake_bot() -> _FakeBot:
    return _FakeBot()


@pytest.fixture
def fake_compressor() -> _FakeCompressor:
    return _FakeCompressor()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "storage")
