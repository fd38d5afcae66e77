from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest


def pytest_configure() -> None:
    """Ensure the repository root is on sys.path.

    Running pytest from inside the package directory may pick
    ``.../olstraj`` as rootdir; importing the top-level package ``olstraj``
    then fails unless the parent directory is on ``sys.path``.
    """

    repo_root = Path(__file__).resolve().parents[2]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


@pytest.fixture
def example_panel() -> pd.DataFrame:
    """Five interleaved cases of five rows: ``outs ~ vals`` keyed by ``ids``."""
    from olstraj.sim.montecarlo import simulate_example_panel

    return simulate_example_panel(seed=42)


@pytest.fixture
def linear_panel() -> pd.DataFrame:
    from olstraj.sim.montecarlo import simulate_trajectories

    return simulate_trajectories(
        n_cases=12, n_waves=5, coefs=(3.0, 0.5), case_sd=0.4, noise_sd=0.5, seed=11,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(12345)
