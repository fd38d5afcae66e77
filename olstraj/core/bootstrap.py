"""Case-resampling bootstrap of pooled means.

Cases, not rows, are the resampling unit: each replicate draws ``M`` case
estimates uniformly with replacement and records their mean. Every term gets
its own child random stream so results do not depend on scheduling.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any

import numpy as np

from olstraj.exceptions import BootstrapCancelled, InvalidInput

if TYPE_CHECKING:
    import threading
    from collections.abc import Mapping

    from numpy.typing import NDArray

__all__ = [
    "DEFAULT_BOOTSTRAP_ITERATIONS",
    "DEFAULT_CHUNK_SIZE",
    "N_JOBS_ENV",
    "bootstrap_mean",
    "bootstrap_se",
    "bootstrap_terms",
    "jackknife_means",
    "resample_means",
    "resolve_n_jobs",
    "spawn_generators",
]

_LOGGER = logging.getLogger(__name__)

# Default bootstrap replications
DEFAULT_BOOTSTRAP_ITERATIONS: int = 4000

# Replicates drawn between cancellation checks
DEFAULT_CHUNK_SIZE: int = 1000

N_JOBS_ENV = "OLSTRAJ_N_JOBS"

RandomSource = Any  # int | np.random.SeedSequence | np.random.Generator | None


def resolve_n_jobs(n_jobs: int | None = None) -> int:
    """Worker count: explicit value, else ``OLSTRAJ_N_JOBS``, else 1.

    ``-1`` means one worker per CPU.
    """
    if n_jobs is None:
        raw = os.getenv(N_JOBS_ENV, "").strip()
        if not raw:
            return 1
        try:
            n_jobs = int(raw)
        except ValueError as e:
            msg = f"{N_JOBS_ENV} must be an integer; got {raw!r}."
            raise InvalidInput(msg) from e
    n = int(n_jobs)
    if n == -1:
        return max(1, multiprocessing.cpu_count())
    if n < 1:
        msg = f"n_jobs must be a positive integer or -1; got {n_jobs!r}."
        raise InvalidInput(msg)
    return n


def spawn_generators(source: RandomSource, n: int) -> list[np.random.Generator]:
    """Split a random source into ``n`` independent child generators.

    ``source`` may be ``None`` (fresh OS entropy), an integer seed, a
    ``SeedSequence`` or a ``Generator``. Children are returned in a fixed
    order, so child ``j`` depends only on ``source`` and ``j``.
    """
    if n < 0:
        raise ValueError("Number of child streams must be non-negative.")
    if isinstance(source, np.random.Generator):
        children = source.spawn(n)
    else:
        ss = source if isinstance(source, np.random.SeedSequence) else np.random.SeedSequence(source)
        children = [np.random.default_rng(child) for child in ss.spawn(n)]
    _LOGGER.debug("Spawned %d independent random streams", n)
    return children


def resample_means(  # noqa: PLR0913
    values: NDArray[np.float64],
    n_boot: int,
    rng: np.random.Generator,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: threading.Event | None = None,
    label: str | None = None,
) -> NDArray[np.float64]:
    """Draw ``n_boot`` case-resampled means of ``values``.

    Parameters
    ----------
    values : (M,) array
        Case estimates in fixed case order.
    n_boot : int
        Number of replicates.
    rng : numpy.random.Generator
        Stream used for index draws.
    chunk_size : int
        Replicates drawn per batch; ``cancel`` is checked before each batch.
    cancel : threading.Event, optional
        Cooperative cancellation flag.
    label : str, optional
        Name used in log and error messages.

    Returns
    -------
    (n_boot,) array of replicate statistics.

    """
    x = np.asarray(values, dtype=np.float64).reshape(-1)
    M = int(x.size)
    if M == 0:
        raise ValueError("Cannot resample an empty set of case estimates.")
    B = int(n_boot)
    if B < 1:
        raise ValueError(f"n_boot must be a positive integer; got {n_boot!r}.")
    step = int(chunk_size)
    if step < 1:
        raise ValueError(f"chunk_size must be a positive integer; got {chunk_size!r}.")

    out = np.empty(B, dtype=np.float64)
    for start in range(0, B, step):
        if cancel is not None and cancel.is_set():
            msg = f"Bootstrap cancelled after {start} of {B} replicates"
            if label is not None:
                msg += f" for term '{label}'"
            raise BootstrapCancelled(msg + ".")
        stop = min(start + step, B)
        idx = rng.integers(0, M, size=(stop - start, M))
        out[start:stop] = x[idx].mean(axis=1)
        _LOGGER.debug("Term %s: replicates %d-%d of %d", label, start + 1, stop, B)
    return out


def jackknife_means(values: NDArray[np.float64]) -> NDArray[np.float64]:
    """Leave-one-case-out means, in case order."""
    x = np.asarray(values, dtype=np.float64).reshape(-1)
    M = int(x.size)
    if M < 2:
        raise ValueError("Jackknife requires at least 2 case estimates.")
    return (float(np.sum(x)) - x) / float(M - 1)


def bootstrap_mean(replicates: NDArray[np.float64]) -> NDArray[np.float64] | float:
    """Mean of the replicate statistics (last axis)."""
    arr = np.asarray(replicates, dtype=np.float64)
    if arr.ndim == 1:
        return float(np.mean(arr))
    return np.mean(arr, axis=-1)


def bootstrap_se(replicates: NDArray[np.float64]) -> NDArray[np.float64] | float:
    """Compute bootstrap standard errors from replicate statistics.

    - Uses ddof=1 (unbiased sample standard deviation).
    - Rejects any non-finite (NaN/Inf) values.
    - A single replicate yields ``NaN`` with a ``RuntimeWarning``.

    Parameters
    ----------
    replicates : (B,) or (K, B) array
        Bootstrap draws of one or ``K`` statistics.

    Returns
    -------
    float for 1-D input, (K,) array otherwise.

    """
    arr = np.asarray(replicates, dtype=np.float64)
    flat = arr.ndim == 1
    if flat:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2:
        raise ValueError("replicates must be a 1-D or 2-D array of shape (K, B).")
    K, B = arr.shape
    if B == 0:
        raise ValueError("bootstrap_se requires at least 1 draw.")
    if not np.isfinite(arr).all():
        bad = np.argwhere(~np.isfinite(arr))
        head = bad[:10].tolist()
        raise ValueError(
            "Non-finite bootstrap draws detected (showing up to 10 [k,b] indices): "
            f"{head}. This indicates numerical failure or an upstream bug.",
        )
    if B == 1:
        warnings.warn(
            "Bootstrap standard error is undefined with a single replicate; returning NaN.",
            RuntimeWarning,
            stacklevel=2,
        )
        se = np.full(K, np.nan, dtype=np.float64)
    else:
        se = np.std(arr, axis=1, ddof=1).astype(np.float64)
    return float(se[0]) if flat else se


def bootstrap_terms(  # noqa: PLR0913
    estimates: Mapping[str, NDArray[np.float64]],
    n_boot: int = DEFAULT_BOOTSTRAP_ITERATIONS,
    *,
    rng: RandomSource = None,
    n_jobs: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: threading.Event | None = None,
) -> dict[str, NDArray[np.float64]]:
    """Resample every term's case estimates on its own random stream.

    Parameters
    ----------
    estimates : mapping
        ``term -> (M_term,)`` case estimates; iteration order fixes the
        assignment of child streams.
    n_boot : int
        Replicates per term.
    rng : int, SeedSequence, Generator or None
        Root random source, split with :func:`spawn_generators`.
    n_jobs : int, optional
        Worker threads (see :func:`resolve_n_jobs`).
    chunk_size, cancel
        Forwarded to :func:`resample_means`.

    Returns
    -------
    dict
        ``term -> (n_boot,)`` replicate statistics, in input term order.

    """
    terms = list(estimates)
    streams = spawn_generators(rng, len(terms))
    workers = min(resolve_n_jobs(n_jobs), max(1, len(terms)))

    def _one(j: int) -> NDArray[np.float64]:
        term = terms[j]
        return resample_means(
            estimates[term],
            n_boot,
            streams[j],
            chunk_size=chunk_size,
            cancel=cancel,
            label=term,
        )

    if workers == 1:
        return {term: _one(j) for j, term in enumerate(terms)}

    _LOGGER.debug("Resampling %d terms on %d threads", len(terms), workers)
    results: dict[int, NDArray[np.float64]] = {}
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = {executor.submit(_one, j): j for j in range(len(terms))}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
    return {terms[j]: results[j] for j in range(len(terms))}
