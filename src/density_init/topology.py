"""Mesh kinds and the dimensions derived from them.

A mesh is one of four kinds, fully determined by the dimension of the space
its nodes live in and by the number of nodes per element:

============  ===========  =============  ==============
kind          ambient dim  intrinsic dim  element
============  ===========  =============  ==============
PLANAR_2D     2            2              triangle
SURFACE_2_5D  3            2              triangle
VOLUME_3D     3            3              tetrahedron
NETWORK_1_5D  2            1              segment
============  ===========  =============  ==============
"""

from __future__ import annotations

import enum
import logging
from typing import Any

from .errors import UnsupportedMeshKind

_LOGGER = logging.getLogger(__name__)


class MeshKind(enum.Enum):
    """Closed set of supported mesh kinds."""

    PLANAR_2D = "mesh.2D"
    SURFACE_2_5D = "mesh.2.5D"
    VOLUME_3D = "mesh.3D"
    NETWORK_1_5D = "mesh.1.5D"

    @property
    def ambient_dim(self) -> int:
        """Dimension of the space the nodes live in."""
        return _DIMENSIONS[self][0]

    @property
    def intrinsic_dim(self) -> int:
        """Dimension of the elements (1 segments, 2 triangles, 3 tetrahedra)."""
        return _DIMENSIONS[self][1]

    @property
    def nodes_per_element(self) -> int:
        """Number of nodes of a linear simplex of this kind."""
        return self.intrinsic_dim + 1

    @property
    def cell_type(self) -> str:
        """meshio cell block name for elements of this kind."""
        return _CELL_TYPES[self.intrinsic_dim]

    @property
    def supports_walking_search(self) -> bool:
        """Whether the greedy walking search can be used on this kind."""
        return supports_walking_search(self)

    @classmethod
    def classify(cls, ambient_dim: int, nodes_per_element: int) -> MeshKind:
        """Return the mesh kind matching the given node and element shapes.

        Args:
            ambient_dim: Number of coordinates per node.
            nodes_per_element: Number of node indices per element.

        Raises:
            UnsupportedMeshKind: If no kind matches.
        """
        for kind in cls:
            if (
                kind.ambient_dim == ambient_dim
                and kind.nodes_per_element == nodes_per_element
            ):
                return kind
        _LOGGER.error(
            "classify: no mesh kind for ambient_dim=%s nodes_per_element=%s",
            ambient_dim,
            nodes_per_element,
        )
        raise UnsupportedMeshKind(
            f"no mesh kind with {ambient_dim}-D nodes and "
            f"{nodes_per_element} nodes per element"
        )


_DIMENSIONS = {
    MeshKind.PLANAR_2D: (2, 2),
    MeshKind.SURFACE_2_5D: (3, 2),
    MeshKind.VOLUME_3D: (3, 3),
    MeshKind.NETWORK_1_5D: (2, 1),
}

_CELL_TYPES = {1: "line", 2: "triangle", 3: "tetra"}


def supports_walking_search(kind: MeshKind) -> bool:
    """Return True if walking search is available for `kind`.

    Walking needs elements that fill the ambient space, so that the facet
    opposite the most negative barycentric weight points toward the query.
    """
    return kind.intrinsic_dim == kind.ambient_dim


def resolve_mesh_kind(mesh: Any) -> MeshKind:
    """Return the kind of `mesh`.

    Raises:
        UnsupportedMeshKind: If `mesh` is not a `density_init.mesh.Mesh`.
    """
    from .mesh import Mesh

    if isinstance(mesh, Mesh):
        return mesh.kind
    _LOGGER.error("resolve_mesh_kind: unsupported mesh object %s", type(mesh).__name__)
    raise UnsupportedMeshKind(f"unknown mesh class {type(mesh).__name__!r}")
