"""Point location on a mesh: which element contains a given point.

Three interchangeable strategies are provided:
  - `NaiveLocator`: scans every element in index order.
  - `TreeLocator`: KD-tree over element centroids, built once per mesh,
    restricts the containment test to nearby elements.
  - `WalkingLocator`: greedy walk across facet neighbors, starting from the
    previously located element. Only available on planar and volume meshes.

All strategies return the lowest-indexed containing element, so they agree
on points lying on facets shared by several elements.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from .errors import (
    InvalidSearchStrategy,
    PointOutsideMesh,
    UnsupportedSearchForMeshKind,
)
from .mesh import Mesh
from .topology import MeshKind, supports_walking_search

_LOGGER = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-10


class SearchStrategy(enum.IntEnum):
    """Point location strategy; values are the historical integer codes."""

    NAIVE = 1
    TREE = 2
    WALKING = 3

    @classmethod
    def parse(cls, value: Union[SearchStrategy, str]) -> SearchStrategy:
        """Return the strategy named by `value` ('naive', 'tree' or 'walking').

        Raises:
            InvalidSearchStrategy: If `value` names no strategy.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        _LOGGER.error("SearchStrategy.parse: unrecognized search %r", value)
        raise InvalidSearchStrategy(
            "'search' must belong to the following list: 'naive', 'tree' or "
            f"'walking'; got {value!r}"
        )


def check_search_for_mesh(strategy: SearchStrategy, kind: MeshKind) -> None:
    """Raise if `strategy` cannot be used on meshes of `kind`.

    Raises:
        UnsupportedSearchForMeshKind: For walking search on surface or
            network meshes.
    """
    if strategy is SearchStrategy.WALKING and not supports_walking_search(kind):
        _LOGGER.error("walking search requested on %s mesh", kind.name)
        raise UnsupportedSearchForMeshKind(
            f"walking search is not available for mesh class {kind.value}."
        )


@dataclass(frozen=True)
class PointLocation:
    """Result of locating a batch of points.

    Attributes:
        elements (NDArray[Any]): Containing element per point, -1 if outside.
        weights (NDArray[Any]): Barycentric weights per point (zero rows for
            points outside the mesh).
    """

    elements: NDArray[Any]
    weights: NDArray[Any]

    def __len__(self) -> int:
        return int(self.elements.shape[0])

    @property
    def located(self) -> NDArray[Any]:
        """Boolean mask of points inside the mesh."""
        return self.elements >= 0

    @property
    def n_located(self) -> int:
        """Number of points inside the mesh."""
        return int(np.count_nonzero(self.located))

    @property
    def n_outside(self) -> int:
        """Number of points outside the mesh."""
        return len(self) - self.n_located

    def subset(self, indices: NDArray[Any]) -> PointLocation:
        """Return the location of the points selected by `indices`."""
        idx = np.asarray(indices, dtype=np.int64)
        return PointLocation(elements=self.elements[idx], weights=self.weights[idx])


class PointLocator:
    """Base class of the point location strategies.

    Args:
        mesh (Mesh): Mesh to search.
        tolerance (float): Slack on barycentric weights for containment.
    """

    strategy: SearchStrategy

    def __init__(self, mesh: Mesh, tolerance: float = DEFAULT_TOLERANCE) -> None:
        if not isinstance(mesh, Mesh):
            raise TypeError(f"expected a Mesh, got {type(mesh).__name__}")
        if not (np.isfinite(tolerance) and tolerance >= 0.0):
            raise ValueError(f"tolerance must be finite and >= 0; got {tolerance}")
        check_search_for_mesh(self.strategy, mesh.kind)
        self.mesh = mesh
        self.tolerance = float(tolerance)
        self._no_weights = np.zeros(mesh.kind.nodes_per_element, dtype=float)

    def find(
        self, point: NDArray[Any], start: Optional[int] = None
    ) -> Tuple[int, NDArray[Any]]:
        """Find the element containing `point`.

        Args:
            point (NDArray[Any]): Query coordinates.
            start (Optional[int]): Hint for strategies that walk the mesh.

        Returns:
            Tuple[int, NDArray[Any]]: Element index (-1 if outside) and the
            barycentric weights of the point in that element.
        """
        raise NotImplementedError

    def locate(self, point: NDArray[Any]) -> int:
        """Return the index of the element containing `point`.

        Raises:
            PointOutsideMesh: If no element contains the point.
        """
        p = self._as_point(point)
        elem, _ = self.find(p)
        if elem < 0:
            raise PointOutsideMesh(p.tolist())
        return elem

    def locate_many(self, points: NDArray[Any]) -> PointLocation:
        """Locate every row of `points`; outside points get element -1."""
        pts = np.asarray(points, dtype=float).reshape(-1, self.mesh.ambient_dim)
        n = pts.shape[0]
        elements = np.full(n, -1, dtype=np.int64)
        weights = np.zeros((n, self.mesh.kind.nodes_per_element), dtype=float)

        previous: Optional[int] = None
        for i in range(n):
            elem, w = self.find(pts[i], start=previous)
            if elem >= 0:
                elements[i] = elem
                weights[i] = w
                previous = elem

        location = PointLocation(elements=elements, weights=weights)
        if location.n_outside:
            _LOGGER.warning(
                "%d of %d points lie outside the mesh and will be ignored",
                location.n_outside,
                n,
            )
        _LOGGER.debug(
            "locate_many(%s): %d points, %d located, %d outside",
            self.strategy.name.lower(),
            n,
            location.n_located,
            location.n_outside,
        )
        return location

    def _as_point(self, point: NDArray[Any]) -> NDArray[Any]:
        p = np.asarray(point, dtype=float).reshape(-1)
        if p.shape[0] != self.mesh.ambient_dim:
            raise ValueError(
                f"point has {p.shape[0]} coordinates; mesh is {self.mesh.ambient_dim}-D"
            )
        return p

    def _first_containing(
        self, candidates: NDArray[Any], point: NDArray[Any]
    ) -> Tuple[int, NDArray[Any]]:
        """Lowest-indexed element of sorted `candidates` containing `point`."""
        if candidates.size == 0:
            return -1, self._no_weights
        pts = np.broadcast_to(point, (candidates.shape[0], point.shape[0]))
        inside, weights = self.mesh.contains_many(candidates, pts, self.tolerance)
        hits = np.flatnonzero(inside)
        if hits.size == 0:
            return -1, self._no_weights
        w = np.clip(weights[hits[0]], 0.0, None)
        return int(candidates[hits[0]]), w / w.sum()


class NaiveLocator(PointLocator):
    """Linear scan over all elements."""

    strategy = SearchStrategy.NAIVE

    def __init__(self, mesh: Mesh, tolerance: float = DEFAULT_TOLERANCE) -> None:
        super().__init__(mesh, tolerance)
        self._all = np.arange(mesh.n_elements, dtype=np.int64)

    def find(
        self, point: NDArray[Any], start: Optional[int] = None
    ) -> Tuple[int, NDArray[Any]]:
        return self._first_containing(self._all, self._as_point(point))


class TreeLocator(PointLocator):
    """KD-tree over element centroids.

    Every element containing a point has its centroid within the largest
    element radius of that point, so a ball query with that radius returns a
    superset of the containing elements.
    """

    strategy = SearchStrategy.TREE

    def __init__(self, mesh: Mesh, tolerance: float = DEFAULT_TOLERANCE) -> None:
        super().__init__(mesh, tolerance)
        self._tree = cKDTree(mesh.centroids)
        self._radius = float(mesh.radii.max()) * (1.0 + 1e-6)
        _LOGGER.debug(
            "TreeLocator: indexed %d element centroids, query radius=%.6g",
            mesh.n_elements,
            self._radius,
        )

    def find(
        self, point: NDArray[Any], start: Optional[int] = None
    ) -> Tuple[int, NDArray[Any]]:
        p = self._as_point(point)
        candidates = np.sort(
            np.asarray(self._tree.query_ball_point(p, r=self._radius), dtype=np.int64)
        )
        return self._first_containing(candidates, p)


class WalkingLocator(PointLocator):
    """Greedy walk across facet neighbors toward the query point.

    From the current element the walk crosses the facet opposite the most
    negative barycentric weight. It stops when the point is contained. When
    a facet it should cross lies on the mesh boundary, or the walk revisits
    elements, it falls back to a full scan, so points inside a non-convex
    domain are still found and truly outside points are reported as such.
    """

    strategy = SearchStrategy.WALKING

    def find(
        self, point: NDArray[Any], start: Optional[int] = None
    ) -> Tuple[int, NDArray[Any]]:
        p = self._as_point(point)
        mesh = self.mesh
        elem = start if start is not None and 0 <= start < mesh.n_elements else self._seed(p)

        visited = set()
        while True:
            visited.add(elem)
            weights, _ = mesh.barycentric(elem, p)
            if np.all(weights >= -self.tolerance):
                return self._canonical(elem, p)

            negative = [int(j) for j in np.argsort(weights) if weights[j] < -self.tolerance]
            across = mesh.neighbors[elem, negative]
            if np.any(across < 0):
                # A non-convex boundary can block the walk short of the point.
                _LOGGER.debug(
                    "WalkingLocator: walk hit the boundary at element %d; scanning.",
                    elem,
                )
                return self._scan(p)

            unvisited = [int(e) for e in across if int(e) not in visited]
            if not unvisited:
                _LOGGER.debug(
                    "WalkingLocator: walk cycled after %d elements; scanning.",
                    len(visited),
                )
                return self._scan(p)
            elem = unvisited[0]

    def _scan(self, point: NDArray[Any]) -> Tuple[int, NDArray[Any]]:
        return self._first_containing(
            np.arange(self.mesh.n_elements, dtype=np.int64), point
        )

    def _seed(self, point: NDArray[Any]) -> int:
        """An element incident to the node nearest to `point`."""
        _, node = self.mesh.tree.query(point)
        incident = self.mesh.node_to_elem.get(int(node), [])
        return incident[0] if incident else 0

    def _canonical(self, elem: int, point: NDArray[Any]) -> Tuple[int, NDArray[Any]]:
        """Lowest-indexed containing element among those touching `elem`."""
        touching = set()
        for node in self.mesh.connectivity[elem]:
            touching.update(self.mesh.node_to_elem.get(int(node), []))
        return self._first_containing(np.array(sorted(touching), dtype=np.int64), point)


_LOCATORS = {
    SearchStrategy.NAIVE: NaiveLocator,
    SearchStrategy.TREE: TreeLocator,
    SearchStrategy.WALKING: WalkingLocator,
}


def make_locator(
    mesh: Mesh,
    search: Union[SearchStrategy, str] = SearchStrategy.TREE,
    tolerance: float = DEFAULT_TOLERANCE,
) -> PointLocator:
    """Build the locator for `search` on `mesh`.

    Raises:
        InvalidSearchStrategy: If `search` names no strategy.
        UnsupportedSearchForMeshKind: For walking search on surface or
            network meshes.
    """
    strategy = SearchStrategy.parse(search)
    check_search_for_mesh(strategy, mesh.kind)
    return _LOCATORS[strategy](mesh, tolerance)
