"""
Monte Carlo p-values against the ambient model.

For every tested barcode we count how many count vectors simulated from the
ambient pool, with the same total, have a log-probability no greater than the
observed one. Barcodes are grouped by total: one simulated molecule sequence per
iteration is grown up to the largest total, and every barcode is compared when
the sequence reaches its total.

Random numbers come from one counter-based stream per iteration, derived from a
single run seed and the global iteration index. Tasks cover contiguous ranges of
iterations, so the summed counts do not depend on how many workers ran them.

Based on:
Phipson B, Smyth GK (2010). Permutation P-values should never be zero.
Stat. Appl. Genet. Mol. Biol. 9, Article 39.
"""

import logging
import math
from functools import partial
from typing import NamedTuple, Optional

import numpy as np
from numba import njit

from .errors import InvalidInput, InvalidIterationCount
from .parallel import Executor, run_serial

logger = logging.getLogger(__name__)


class NullModel(NamedTuple):
    """Read-only arrays describing the ambient sampling distribution."""

    cum_prop: np.ndarray
    log_prop: np.ndarray
    alpha_prop: np.ndarray
    alpha: float


def make_null_model(ambient: np.ndarray, alpha: float = np.inf) -> NullModel:
    ambient = np.asarray(ambient, dtype=np.float64)
    cum_prop = np.cumsum(ambient)
    cum_prop /= cum_prop[-1]
    cum_prop[-1] = 1.0
    alpha = float(alpha)
    alpha_prop = np.zeros_like(ambient) if np.isinf(alpha) else alpha * ambient
    return NullModel(cum_prop, np.log(ambient), alpha_prop, alpha)


def check_niters(niters) -> int:
    try:
        valid = (not isinstance(niters, (bool, np.bool_))
                 and np.isfinite(niters) and int(niters) == niters and niters > 0)
    except (TypeError, ValueError):
        valid = False
    if not valid:
        raise InvalidIterationCount(f"niters must be a positive integer, got {niters!r}",
                                    parameter="niters", value=niters)
    return int(niters)


def split_iterations(niters: int, n_workers: int) -> np.ndarray:
    """
    Near-equal iteration shares, one per task, summing exactly to ``niters``.

    No task is created without work, so fewer than ``n_workers`` shares are
    returned when ``niters < n_workers``. The remainder goes to the first task.
    """
    niters = check_niters(niters)
    if n_workers < 1:
        raise InvalidInput(f"n_workers must be at least 1, got {n_workers}",
                           parameter="n_workers", value=n_workers)
    n_tasks = min(n_workers, niters)
    per_task = np.full(n_tasks, niters // n_tasks, dtype=np.int64)
    per_task[0] += niters % n_tasks
    return per_task


def stream_generator(seed: int, stream: int) -> np.random.Generator:
    """Independent Philox generator for stream ``stream`` of run ``seed``."""
    return np.random.Generator(np.random.Philox(np.random.SeedSequence(seed, spawn_key=(stream,))))


def new_seed() -> int:
    """Fresh run seed drawn from OS entropy."""
    return int(np.random.SeedSequence().entropy)


@njit(nogil=True)
def _simulate_iteration(uniforms, cum_prop, log_prop, alpha_prop, alpha,
                        totalval, totallen, probs, n_above, counts, molecules):
    """
    Grow one simulated molecule sequence and update the exceedance counts.

    ``totalval`` must be ascending with ``totallen`` barcodes each, and
    ``probs`` ordered to match. ``counts`` must be all zero on entry and is
    zero again on exit.
    """
    ngenes = len(cum_prop)
    multinomial = np.isinf(alpha)
    cur_total = 0
    cur_prob = 0.0
    cell = 0

    for t in range(len(totalval)):
        target = totalval[t]
        while cur_total < target:
            u = uniforms[cur_total]
            if multinomial:
                g = np.searchsorted(cum_prop, u, side='right')
            else:
                # Polya urn: a fresh draw from the ambient profile with weight alpha,
                # otherwise a copy of one of the cur_total molecules drawn so far.
                scaled = u * (alpha + cur_total)
                if scaled < alpha:
                    g = np.searchsorted(cum_prop, scaled / alpha, side='right')
                else:
                    k = int(scaled - alpha)
                    if k >= cur_total:
                        k = cur_total - 1
                    g = molecules[k]
            if g >= ngenes:
                g = ngenes - 1

            c = counts[g]
            if multinomial:
                cur_prob += log_prop[g] - math.log(c + 1.0)
            else:
                cur_prob += math.log(alpha_prop[g] + c) - math.log(c + 1.0)
            counts[g] = c + 1
            molecules[cur_total] = g
            cur_total += 1

        for j in range(cell, cell + totallen[t]):
            if cur_prob <= probs[j]:
                n_above[j] += 1
        cell += totallen[t]

    for k in range(cur_total):
        counts[molecules[k]] = 0


def simulate_share(start: int, iterations: int, seed: int, totalval: np.ndarray,
                   totallen: np.ndarray, probs: np.ndarray, model: NullModel) -> np.ndarray:
    """
    Run iterations ``start .. start + iterations - 1`` and count exceedances.

    Module-level so that it can be shipped to a process pool.
    """
    n_above = np.zeros(len(probs), dtype=np.int64)
    if len(totalval) == 0:
        return n_above
    max_total = int(totalval[-1])
    counts = np.zeros(len(model.cum_prop), dtype=np.int64)
    molecules = np.zeros(max(max_total, 1), dtype=np.int64)

    for it in range(start, start + iterations):
        uniforms = stream_generator(seed, it).random(max_total)
        _simulate_iteration(uniforms, model.cum_prop, model.log_prop, model.alpha_prop, model.alpha,
                            totalval, totallen, probs, n_above, counts, molecules)
    logger.debug(f"Finished iterations {start}..{start + iterations - 1}")
    return n_above


def permute_counter(
    totals: np.ndarray,
    probs: np.ndarray,
    ambient: np.ndarray,
    niters: int,
    alpha: float = np.inf,
    seed: Optional[int] = None,
    n_workers: int = 1,
    executor: Optional[Executor] = None,
) -> np.ndarray:
    """
    Number of simulated draws at least as extreme as each observed barcode.

    Parameters
    ----------
    totals : np.ndarray
        Total count of each tested barcode.
    probs : np.ndarray
        Data term of each tested barcode's log-probability.
    ambient : np.ndarray
        Ambient proportions.
    niters : int
        Total number of Monte Carlo iterations.
    alpha : float
        Dirichlet-multinomial concentration, ``inf`` for the multinomial.
    seed : int, optional
        Logical run seed; a fresh one is drawn when omitted.
    n_workers : int
        Number of tasks to split the iterations over.
    executor : callable, optional
        Runs a list of zero-argument tasks and returns their results in order.
        Defaults to running them serially.

    Returns
    -------
    np.ndarray
        Count of simulated log-probabilities <= observed, in the input order.
    """
    niters = check_niters(niters)
    totals = np.asarray(totals, dtype=np.int64)
    probs = np.asarray(probs, dtype=np.float64)
    if seed is None:
        seed = new_seed()
    if executor is None:
        executor = run_serial

    o = np.lexsort((probs, totals))
    re_probs = np.ascontiguousarray(probs[o])
    totalval, totallen = np.unique(totals[o], return_counts=True)
    totallen = totallen.astype(np.int64)
    model = make_null_model(ambient, alpha)

    per_task = split_iterations(niters, n_workers)
    starts = np.concatenate(([0], np.cumsum(per_task)[:-1]))
    logger.info(f"Running {niters} Monte Carlo iterations over {len(totalval)} distinct totals "
                f"in {len(per_task)} task(s)")

    tasks = [
        partial(simulate_share, int(start), int(n), seed, totalval, totallen, re_probs, model)
        for start, n in zip(starts, per_task)
    ]
    results = executor(tasks)
    if len(results) != len(tasks):
        raise InvalidInput(f"executor returned {len(results)} results for {len(tasks)} tasks",
                           parameter="executor", value=len(results))

    n_above_sorted = np.sum(results, axis=0)
    n_above = np.empty_like(n_above_sorted)
    n_above[o] = n_above_sorted
    return n_above
