from __future__ import annotations

from typing import List

import pytest

from interpreter import Engine


@pytest.fixture()
def output() -> List[str]:
    return []


@pytest.fixture()
def completions() -> List[int]:
    return []


@pytest.fixture()
def engine(output: List[str], completions: List[int]) -> Engine:
    """Engine with only the default types and no commands."""
    return Engine(output_sink=output.append, on_completion=completions.append)


@pytest.fixture()
def std_engine(output: List[str], completions: List[int]) -> Engine:
    return Engine(output_sink=output.append, on_completion=completions.append, install_standard=True)
