from __future__ import annotations

from typing import Callable

import numpy as np
import pytest
from numpy.typing import NDArray

from gapsong.engine import OutputBackend


class FakeStream:
    """Output backend that records the render callback instead of opening a device."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.render: Callable[[int], NDArray[np.float32]] | None = None
        self.opened = 0
        self.closed = 0

    def start(
        self,
        render: Callable[[int], NDArray[np.float32]],
        sample_rate: int,
        channels: int,
        block_size: int,
    ) -> Callable[[], None]:
        _ = (sample_rate, channels, block_size)
        if self.fail:
            raise RuntimeError("no output device")
        self.render = render
        self.opened += 1
        return self._close

    def _close(self) -> None:
        self.closed += 1

    @property
    def backend(self) -> OutputBackend:
        return OutputBackend(name="fake", start=self.start)


@pytest.fixture
def fake_stream() -> FakeStream:
    return FakeStream()


@pytest.fixture(autouse=True)
def _isolated_log_dir(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GAPSONG_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
