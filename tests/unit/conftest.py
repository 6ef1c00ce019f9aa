"""Unit test fixtures for isolated, fast test execution.

External tools and the network are never touched here: the channel, the
tool runner and the frame writer are replaced by the fakes in
``tests.unit.fakes``.
"""

from __future__ import annotations

import pytest

from tests.unit.fakes import FakeChannel, FakeRunner


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
