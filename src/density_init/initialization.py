"""Entry point of the density initialization.

`initialize` validates the configuration once, resolves the mesh kind and
the point location strategy, locates the data, and either runs one heat
diffusion per smoothing parameter ('Heat') or selects the smoothing
parameter by cross-validation ('CV').
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from ._tasks import resolve_n_jobs, run_tasks
from .config import to_cpu
from .cross_validation import partition_folds, select_by_cv
from .errors import InvalidInitParameter
from .heat import Field, HeatDiffusion, check_lambda
from .locator import SearchStrategy, check_search_for_mesh, make_locator
from .mesh import Mesh
from .parameters import (
    DEFAULT_HEAT_ITER,
    DEFAULT_HEAT_STEP,
    DEFAULT_N_FOLDS,
    DiffusionConfig,
    InitMode,
)
from .topology import resolve_mesh_kind

_LOGGER = logging.getLogger(__name__)

LambdaLike = Union[float, Sequence[float], NDArray[Any], None]


@dataclass(frozen=True)
class InitResult:
    """Initial density field(s) returned by `initialize`.

    Attributes:
        mode (InitMode): Procedure that produced the result.
        fields (Tuple[Field, ...]): One field per smoothing parameter in Heat
            mode, the selected field in CV mode.
        lambdas (Tuple[float, ...]): Smoothing parameters as given.
        selected_lambda (Optional[float]): Parameter chosen in CV mode.
        cv_scores (Optional[NDArray[Any]]): Held-out log-likelihood per
            candidate in CV mode.
    """

    mode: InitMode
    fields: Tuple[Field, ...]
    lambdas: Tuple[float, ...]
    selected_lambda: Optional[float] = None
    cv_scores: Optional[NDArray[Any]] = None

    @property
    def f_init(self) -> NDArray[Any]:
        """Initial vector(s): one column per lambda (Heat) or a vector (CV)."""
        if self.mode is InitMode.CV:
            return self.fields[0].values
        return np.column_stack([f.values for f in self.fields])

    @property
    def n_outside(self) -> int:
        """Number of data points ignored because they lie outside the mesh."""
        return self.fields[0].n_outside


def _check_points(points: Any, mesh: Mesh) -> NDArray[Any]:
    try:
        pts = np.asarray(to_cpu(points), dtype=float)
    except (TypeError, ValueError):
        raise InvalidInitParameter("points must be a numeric array") from None
    if pts.ndim == 1 and pts.shape[0] == mesh.ambient_dim:
        pts = pts[None, :]
    if pts.ndim != 2 or pts.shape[1] != mesh.ambient_dim:
        raise InvalidInitParameter(
            f"points must have shape (N, {mesh.ambient_dim}); got {pts.shape}"
        )
    if pts.shape[0] == 0:
        raise InvalidInitParameter("points is empty")
    if not np.all(np.isfinite(pts)):
        raise InvalidInitParameter("points contains non-finite coordinates")
    return pts


def _check_lambdas(lambdas: LambdaLike) -> Tuple[float, ...]:
    if lambdas is None:
        raise InvalidInitParameter("at least one smoothing parameter 'lambda' is required")
    values = np.atleast_1d(np.asarray(lambdas, dtype=object)).ravel()
    if values.size == 0:
        raise InvalidInitParameter("at least one smoothing parameter 'lambda' is required")
    return tuple(check_lambda(lam) for lam in values)


def initialize(
    points: NDArray[Any],
    mesh: Mesh,
    lambdas: LambdaLike = None,
    heat_step: float = DEFAULT_HEAT_STEP,
    heat_iter: int = DEFAULT_HEAT_ITER,
    init: Union[InitMode, str] = InitMode.HEAT,
    n_folds: int = DEFAULT_N_FOLDS,
    search: Union[SearchStrategy, str] = SearchStrategy.TREE,
    *,
    n_jobs: Optional[int] = 1,
    cancel: Optional[threading.Event] = None,
    shuffle: bool = False,
    seed: Optional[int] = None,
) -> InitResult:
    """Compute the initial density field(s) for a density estimator.

    Args:
        points (NDArray[Any]): Data locations, shape (N, ambient_dim).
        mesh (Mesh): Finite-element mesh.
        lambdas: Smoothing parameter or ordered candidates.
        heat_step (float): Time increment of the heat iteration.
        heat_iter (int): Number of heat iterations.
        init (Union[InitMode, str]): 'Heat' or 'CV'.
        n_folds (int): Number of cross-validation folds (CV only).
        search (Union[SearchStrategy, str]): 'naive', 'tree' or 'walking'.
        n_jobs (Optional[int]): Worker threads for independent runs.
        cancel (Optional[threading.Event]): Cooperative cancellation, checked
            between iterations and between runs.
        shuffle (bool): Shuffle points before splitting into folds (CV only).
        seed (Optional[int]): Seed of the fold shuffle (CV only).

    Returns:
        InitResult: Fields and, in CV mode, the selected parameter.

    Raises:
        UnsupportedMeshKind: If `mesh` is not a supported mesh.
        InvalidSearchStrategy: If `search` names no strategy.
        UnsupportedSearchForMeshKind: For walking search on surface or
            network meshes.
        InvalidInitMode: If `init` is neither 'Heat' nor 'CV'.
        InvalidInitParameter: If a numeric parameter or `points` is invalid.
        NoPointsLocated: If every point lies outside the mesh.
        CVFailed: If no cross-validation fold can be evaluated.
        NumericalDivergence: If the heat iteration is unstable.
    """
    kind = resolve_mesh_kind(mesh)
    strategy = SearchStrategy.parse(search)
    check_search_for_mesh(strategy, kind)
    mode = InitMode.parse(init)

    config = DiffusionConfig(heat_step=heat_step, heat_iter=heat_iter, search=strategy)
    pts = _check_points(points, mesh)
    lams = _check_lambdas(lambdas)
    resolve_n_jobs(n_jobs)
    if mode is InitMode.CV:
        # Validates n_folds against the number of points before any work.
        partition_folds(pts.shape[0], n_folds)

    _LOGGER.info(
        "initialize: mode=%s mesh=%s points=%d lambdas=%d search=%s "
        "heat_step=%g heat_iter=%d",
        mode.value,
        kind.name,
        pts.shape[0],
        len(lams),
        strategy.name.lower(),
        config.heat_step,
        config.heat_iter,
    )

    locator = make_locator(mesh, strategy)
    diffusion = HeatDiffusion(mesh)

    if mode is InitMode.CV:
        cv = select_by_cv(
            pts,
            mesh,
            lams,
            config,
            n_folds,
            locator=locator,
            diffusion=diffusion,
            shuffle=shuffle,
            seed=seed,
            n_jobs=n_jobs,
            cancel=cancel,
        )
        return InitResult(
            mode=mode,
            fields=(cv.field,),
            lambdas=lams,
            selected_lambda=cv.selected_lambda,
            cv_scores=cv.scores,
        )

    location = locator.locate_many(pts)
    fields = run_tasks(
        lambda lam: diffusion.run(
            location, lam, config.heat_step, config.heat_iter, cancel=cancel
        ),
        lams,
        n_jobs=n_jobs,
        cancel=cancel,
    )
    return InitResult(mode=mode, fields=tuple(fields), lambdas=lams)


heat_init = initialize
