"""Cross-validated choice of the heat diffusion smoothing parameter.

For every candidate smoothing parameter and every fold, the heat diffusion
is run on the points outside the fold and scored by the log-likelihood of
the held-out points. The candidate with the highest total score (ties go to
the smallest value) is re-run on the full data set.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from ._tasks import run_tasks
from .config import default_seed
from .errors import CVFailed, InvalidInitParameter
from .heat import Field, HeatDiffusion, check_lambda
from .locator import PointLocation, PointLocator, make_locator
from .mesh import Mesh
from .parameters import DEFAULT_N_FOLDS, DiffusionConfig

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CVResult:
    """Outcome of the cross-validation.

    Attributes:
        field (Field): Field of the selected parameter on the full data.
        selected_lambda (float): Selected smoothing parameter.
        lambdas (Tuple[float, ...]): Candidate smoothing parameters.
        scores (NDArray[Any]): Total held-out log-likelihood per candidate.
        n_scored_folds (int): Number of folds that contributed to the scores.
    """

    field: Field
    selected_lambda: float
    lambdas: Tuple[float, ...]
    scores: NDArray[Any]
    n_scored_folds: int


def partition_folds(
    n_points: int,
    n_folds: int,
    shuffle: bool = False,
    seed: Optional[int] = None,
) -> List[NDArray[Any]]:
    """Split ``range(n_points)`` into `n_folds` disjoint folds.

    Folds are contiguous blocks whose sizes differ by at most one. With
    `shuffle` the indices are permuted first by a PCG64 generator seeded
    with `seed` (default: the configured default seed); each fold is
    returned sorted.

    Raises:
        InvalidInitParameter: If `n_folds` is below two or above `n_points`.
    """
    try:
        is_int = not isinstance(n_folds, bool) and int(n_folds) == n_folds
    except (TypeError, ValueError):
        is_int = False
    if not is_int or n_folds < 2:
        raise InvalidInitParameter(f"n_folds must be an integer >= 2; got {n_folds!r}")
    if n_folds > n_points:
        raise InvalidInitParameter(
            f"n_folds ({n_folds}) cannot exceed the number of points ({n_points})"
        )

    indices = np.arange(n_points, dtype=np.int64)
    if shuffle:
        s = default_seed() if seed is None else int(seed)
        indices = np.random.Generator(np.random.PCG64(s)).permutation(indices)
        _LOGGER.debug("partition_folds: shuffled %d indices with seed=%d", n_points, s)
    return [np.sort(fold) for fold in np.array_split(indices, int(n_folds))]


def heldout_log_likelihood(field: Field, mesh: Mesh, location: PointLocation) -> float:
    """Sum of ``log f(x)`` over the located held-out points.

    Points where the field vanishes contribute ``-inf``.
    """
    located = location.located
    values = mesh.evaluate(
        field.values, location.elements[located], location.weights[located]
    )
    with np.errstate(divide="ignore"):
        return float(np.sum(np.log(values)))


def select_by_cv(
    points: NDArray[Any],
    mesh: Mesh,
    lambdas: Union[float, Sequence[float], NDArray[Any]],
    config: Optional[DiffusionConfig] = None,
    n_folds: int = DEFAULT_N_FOLDS,
    *,
    locator: Optional[PointLocator] = None,
    diffusion: Optional[HeatDiffusion] = None,
    shuffle: bool = False,
    seed: Optional[int] = None,
    n_jobs: Optional[int] = 1,
    cancel: Optional[threading.Event] = None,
) -> CVResult:
    """Choose the smoothing parameter by K-fold cross-validation.

    Args:
        points (NDArray[Any]): Data locations, shape (N, ambient_dim).
        mesh (Mesh): Mesh to diffuse on.
        lambdas: Candidate smoothing parameters.
        config (Optional[DiffusionConfig]): Heat step, iterations and search.
        n_folds (int): Number of folds.
        locator (Optional[PointLocator]): Prebuilt locator for `mesh`.
        diffusion (Optional[HeatDiffusion]): Prebuilt diffusion for `mesh`.
        shuffle (bool): Permute the points before splitting into folds.
        seed (Optional[int]): Seed of the permutation.
        n_jobs (Optional[int]): Worker threads for the (lambda, fold) runs.
        cancel (Optional[threading.Event]): Cooperative cancellation.

    Returns:
        CVResult: Selected field, parameter and per-candidate scores.

    Raises:
        InvalidInitParameter: On an empty candidate list or bad `n_folds`.
        CVFailed: If no fold has located points on both sides of the split,
            or every candidate scores -inf.
    """
    config = config if config is not None else DiffusionConfig()
    lams = tuple(check_lambda(lam) for lam in np.atleast_1d(np.asarray(lambdas, dtype=object)))
    if not lams:
        raise InvalidInitParameter("cross-validation needs at least one lambda")

    locator = locator if locator is not None else make_locator(mesh, config.search)
    diffusion = diffusion if diffusion is not None else HeatDiffusion(mesh)
    location = locator.locate_many(points)
    n_points = len(location)
    folds = partition_folds(n_points, n_folds, shuffle=shuffle, seed=seed)

    usable: List[Tuple[int, PointLocation, PointLocation]] = []
    for i, heldout in enumerate(folds):
        train = np.setdiff1d(np.arange(n_points), heldout, assume_unique=True)
        train_loc = location.subset(train)
        held_loc = location.subset(heldout)
        if train_loc.n_located == 0 or held_loc.n_located == 0:
            _LOGGER.warning(
                "select_by_cv: fold %d skipped (%d training, %d held-out points located)",
                i,
                train_loc.n_located,
                held_loc.n_located,
            )
            continue
        usable.append((i, train_loc, held_loc))

    if not usable:
        _LOGGER.error("select_by_cv: no fold could be evaluated")
        raise CVFailed(
            f"none of the {len(folds)} folds has located training and held-out points"
        )

    def score(task: Tuple[int, Tuple[int, PointLocation, PointLocation]]) -> float:
        a, (i, train_loc, held_loc) = task
        field = diffusion.run(
            train_loc, lams[a], config.heat_step, config.heat_iter, cancel=cancel
        )
        s = heldout_log_likelihood(field, mesh, held_loc)
        _LOGGER.debug("select_by_cv: lam=%g fold=%d score=%.6g", lams[a], i, s)
        return s

    tasks = [(a, fold) for a in range(len(lams)) for fold in usable]
    fold_scores = run_tasks(score, tasks, n_jobs=n_jobs, cancel=cancel)

    scores = np.zeros(len(lams), dtype=float)
    for (a, _), s in zip(tasks, fold_scores):
        scores[a] += s

    if not np.any(np.isfinite(scores)):
        _LOGGER.error(
            "select_by_cv: every candidate gives zero density at some held-out point"
        )
        raise CVFailed(
            f"no candidate among lambdas={list(lams)} gives a finite held-out score"
        )

    best = min(range(len(lams)), key=lambda a: (-scores[a], lams[a]))
    _LOGGER.info(
        "select_by_cv: selected lambda=%g (score=%.6g) among %d candidates, %d folds",
        lams[best],
        scores[best],
        len(lams),
        len(usable),
    )

    field = diffusion.run(
        location, lams[best], config.heat_step, config.heat_iter, cancel=cancel
    )
    return CVResult(
        field=field,
        selected_lambda=lams[best],
        lambdas=lams,
        scores=scores,
        n_scored_folds=len(usable),
    )
