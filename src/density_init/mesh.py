"""Module defining the Mesh class for linear simplicial finite-element meshes.

This module provides:
  - Construction from arrays or any file format readable by meshio.
  - Classification into one of the four supported mesh kinds.
  - Per-element geometry (centroids, radii, measures, barycentric projectors).
  - Facet adjacency and a KD-tree over the nodes for point location.
  - P1 FEM routines (B-matrix, stiffness, mass, global assembly).

The mesh is immutable once built: every array is stored read-only so a mesh
can be shared by concurrent diffusion runs.
"""

from __future__ import annotations

import collections
import logging
import math
from typing import Any, DefaultDict, Dict, List, Optional, Tuple, Union

import meshio
import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from .config import backend_name, to_cpu, xp
from .errors import UnsupportedMeshKind
from .topology import MeshKind

_LOGGER = logging.getLogger(__name__)

_DEGENERATE_TOL = 1e-12
_FLAT_TOL = 1e-12


def _readonly(a: NDArray[Any]) -> NDArray[Any]:
    a.flags.writeable = False
    return a


class Mesh:
    """Linear simplicial mesh of one of the four supported kinds.

    Args:
        verts (Optional[NDArray[Any]]): Node coordinates (n_nodes×ambient_dim).
        connectivity (Optional[NDArray[Any]]): Element node indices
            (n_elements×nodes_per_element).
        kind (Optional[Union[MeshKind, str]]): Expected mesh kind. Inferred
            from the array shapes when omitted.
        filename (Optional[str]): Mesh file to read with meshio instead of
            passing arrays.

    Attributes:
        verts (NDArray[Any]): Node coordinates.
        connectivity (NDArray[Any]): Element node indices.
        kind (MeshKind): Mesh kind.
        centroids (NDArray[Any]): Element centroids.
        radii (NDArray[Any]): Largest centroid-to-vertex distance per element.
        measures (NDArray[Any]): Element length, area or volume.
        lumped_mass (NDArray[Any]): Integral of each nodal hat function.
        edges (NDArray[Any]): Edge vectors from the first vertex of each
            element (n_elements×intrinsic_dim×ambient_dim).
        pinv (NDArray[Any]): Pseudo-inverses of `edges`, mapping a relative
            position to barycentric weights 1..intrinsic_dim.
        neighbors (NDArray[Any]): Element across the facet opposite each
            local vertex, -1 on the boundary.
        node_to_elem (DefaultDict[int, List[int]]): Node→[element indices].
        tree (cKDTree): KD-tree over `verts` for nearest-node queries.
    """

    verts: NDArray[Any]
    connectivity: NDArray[Any]
    kind: MeshKind
    centroids: NDArray[Any]
    radii: NDArray[Any]
    measures: NDArray[Any]
    lumped_mass: NDArray[Any]
    edges: NDArray[Any]
    pinv: NDArray[Any]
    neighbors: NDArray[Any]
    node_to_elem: DefaultDict[int, List[int]]
    tree: cKDTree

    def __init__(
        self,
        verts: Optional[NDArray[Any]] = None,
        connectivity: Optional[NDArray[Any]] = None,
        kind: Optional[Union[MeshKind, str]] = None,
        filename: Optional[str] = None,
    ) -> None:
        """Initialize the mesh from arrays or from a file.

        Raises:
            ValueError: If no geometry is given, indices are out of range or
                an element is degenerate.
            UnsupportedMeshKind: If the shapes match no mesh kind or do not
                match the requested `kind`.
        """
        if kind is not None and not isinstance(kind, MeshKind):
            try:
                kind = MeshKind(kind)
            except ValueError:
                raise UnsupportedMeshKind(f"unknown mesh kind {kind!r}") from None

        if filename is not None:
            verts, connectivity, kind = self._read_arrays(meshio.read(filename), kind)

        if verts is None or connectivity is None:
            raise ValueError("Mesh needs either a filename or verts and connectivity")

        verts_np = np.array(to_cpu(verts), dtype=float)
        conn_np = np.array(to_cpu(connectivity), dtype=np.int64)
        if verts_np.ndim != 2 or conn_np.ndim != 2:
            raise ValueError(
                f"verts and connectivity must be 2-D; got {verts_np.shape} and {conn_np.shape}"
            )
        if verts_np.shape[0] == 0 or conn_np.shape[0] == 0:
            raise ValueError("empty mesh (no nodes or no elements)")

        inferred = MeshKind.classify(verts_np.shape[1], conn_np.shape[1])
        if kind is not None and kind is not inferred:
            _LOGGER.error(
                "Mesh __init__: arrays describe %s but kind=%s was requested",
                inferred.name,
                kind.name,
            )
            raise UnsupportedMeshKind(
                f"arrays describe a {inferred.name} mesh, not {kind.name}"
            )

        n_nodes = verts_np.shape[0]
        if conn_np.min() < 0 or conn_np.max() >= n_nodes:
            _LOGGER.error(
                "Mesh __init__: connectivity indices outside [0, %d)", n_nodes
            )
            raise ValueError(f"connectivity indices must lie in [0, {n_nodes})")

        self.kind = inferred
        self.verts = _readonly(verts_np)
        self.connectivity = _readonly(conn_np)

        _LOGGER.debug(
            "Mesh __init__: building %s geometry on backend=%s (storage on CPU)",
            self.kind.name,
            backend_name(),
        )
        self._build_geometry()
        self._build_topology()

        _LOGGER.info(
            "Mesh initialized (%s) with %d nodes and %d elements",
            self.kind.name,
            self.n_nodes,
            self.n_elements,
        )

    # ------------------------------------------------------------------ build
    def _build_geometry(self) -> None:
        """Compute per-element geometry on the active backend, store on CPU."""
        m = self.intrinsic_dim

        vxp = xp.asarray(self.verts)
        txp = xp.asarray(self.connectivity)
        elem_xyz = vxp[txp]  # (E, m+1, n)

        v0 = elem_xyz[:, 0, :]
        edges = elem_xyz[:, 1:, :] - v0[:, None, :]  # (E, m, n)
        gram = edges @ xp.swapaxes(edges, 1, 2)  # (E, m, m)
        det = xp.linalg.det(gram)

        centroids = elem_xyz.mean(axis=1)
        radii = xp.linalg.norm(elem_xyz - centroids[:, None, :], axis=2).max(axis=1)

        det_cpu = np.asarray(to_cpu(det), dtype=float)
        radii_cpu = np.asarray(to_cpu(radii), dtype=float)
        measures = np.sqrt(np.clip(det_cpu, 0.0, None)) / math.factorial(m)

        deg_mask = ~(measures > _DEGENERATE_TOL * radii_cpu**m)
        if np.any(deg_mask):
            _LOGGER.error(
                "Mesh __init__: %d degenerate element(s) with ~zero measure (first: %d).",
                int(np.count_nonzero(deg_mask)),
                int(np.flatnonzero(deg_mask)[0]),
            )
            raise ValueError("Degenerate element: near-zero measure.")

        pinv = xp.linalg.inv(gram) @ edges  # (E, m, n)

        self.edges = _readonly(np.asarray(to_cpu(edges), dtype=float))
        self.pinv = _readonly(np.asarray(to_cpu(pinv), dtype=float))
        self.centroids = _readonly(np.asarray(to_cpu(centroids), dtype=float))
        self.radii = _readonly(radii_cpu)
        self.measures = _readonly(measures)

        lumped = np.zeros(self.n_nodes, dtype=float)
        share = measures / (m + 1)
        for j in range(m + 1):
            np.add.at(lumped, self.connectivity[:, j], share)
        self.lumped_mass = _readonly(lumped)

        _LOGGER.debug(
            "Mesh geometry: total measure=%.6g, min element=%.6g, max radius=%.6g",
            float(measures.sum()),
            float(measures.min()),
            float(radii_cpu.max()),
        )

    def _build_topology(self) -> None:
        """Build node→element lists, facet adjacency and the node KD-tree."""
        self.node_to_elem = collections.defaultdict(list)
        for elem_idx, elem in enumerate(self.connectivity):
            for node in elem:
                self.node_to_elem[int(node)].append(elem_idx)

        n_elem, k = self.connectivity.shape
        # Facet j of an element is the one opposite its local vertex j.
        facets = np.concatenate(
            [
                np.sort(np.delete(self.connectivity, j, axis=1), axis=1)
                for j in range(k)
            ],
            axis=0,
        )
        owner = np.tile(np.arange(n_elem), k)
        local = np.repeat(np.arange(k), n_elem)

        _, inverse, counts = np.unique(
            facets, axis=0, return_inverse=True, return_counts=True
        )
        inverse = inverse.reshape(-1)

        neighbors = np.full((n_elem, k), -1, dtype=np.int64)
        # Only manifold facets (shared by exactly two elements) are walkable.
        shared = np.flatnonzero(counts[inverse] == 2)
        order = shared[np.argsort(inverse[shared], kind="stable")]
        first, second = order[0::2], order[1::2]
        neighbors[owner[first], local[first]] = owner[second]
        neighbors[owner[second], local[second]] = owner[first]

        n_non_manifold = int(np.count_nonzero(counts > 2))
        if n_non_manifold:
            _LOGGER.debug(
                "Mesh topology: %d facet(s) shared by more than two elements.",
                n_non_manifold,
            )
        self.neighbors = _readonly(neighbors)

        # KD-tree stays CPU (SciPy)
        self.tree = cKDTree(self.verts)

        _LOGGER.debug(
            "Mesh topology: %d interior facets, %d boundary facets",
            int(first.size),
            int(np.count_nonzero(neighbors < 0)),
        )

    # ------------------------------------------------------------- properties
    @property
    def n_nodes(self) -> int:
        """Number of mesh nodes."""
        return int(self.verts.shape[0])

    @property
    def n_elements(self) -> int:
        """Number of mesh elements."""
        return int(self.connectivity.shape[0])

    @property
    def ambient_dim(self) -> int:
        """Dimension of the node coordinates."""
        return self.kind.ambient_dim

    @property
    def intrinsic_dim(self) -> int:
        """Dimension of the elements."""
        return self.kind.intrinsic_dim

    def __repr__(self) -> str:
        """Return a short description of the mesh."""
        return (
            f"Mesh(kind={self.kind.name}, n_nodes={self.n_nodes}, "
            f"n_elements={self.n_elements})"
        )

    # --------------------------------------------------------------- geometry
    def barycentric_many(
        self, elements: NDArray[Any], points: NDArray[Any]
    ) -> Tuple[NDArray[Any], NDArray[Any]]:
        """Barycentric weights of paired points and elements.

        For surface and network meshes the point is first projected onto the
        element's affine hull; the distance to that hull is returned as the
        residual (always zero for planar and volume meshes).

        Args:
            elements (NDArray[Any]): Element indices, shape (P,).
            points (NDArray[Any]): Query coordinates, shape (P, ambient_dim).

        Returns:
            Tuple[NDArray[Any], NDArray[Any]]:
                - weights: shape (P, nodes_per_element), summing to one.
                - residual: shape (P,).
        """
        elems = np.asarray(elements, dtype=np.int64).reshape(-1)
        pts = np.asarray(points, dtype=float).reshape(elems.shape[0], self.ambient_dim)

        rel = pts - self.verts[self.connectivity[elems, 0]]
        w = np.einsum("pmn,pn->pm", self.pinv[elems], rel)
        weights = np.concatenate([1.0 - w.sum(axis=1, keepdims=True), w], axis=1)

        if self.intrinsic_dim < self.ambient_dim:
            recon = np.einsum("pm,pmn->pn", w, self.edges[elems])
            residual = np.linalg.norm(rel - recon, axis=1)
        else:
            residual = np.zeros(elems.shape[0], dtype=float)
        return weights, residual

    def barycentric(
        self, element: int, point: NDArray[Any]
    ) -> Tuple[NDArray[Any], float]:
        """Barycentric weights of one point with respect to one element.

        Args:
            element (int): Element index.
            point (NDArray[Any]): Query coordinates.

        Returns:
            Tuple[NDArray[Any], float]: Weights and distance to the element's hull.
        """
        weights, residual = self.barycentric_many(
            np.array([element]), np.asarray(point, dtype=float)[None, :]
        )
        return weights[0], float(residual[0])

    def contains_many(
        self,
        elements: NDArray[Any],
        points: NDArray[Any],
        tolerance: float = 1e-10,
    ) -> Tuple[NDArray[Any], NDArray[Any]]:
        """Containment test of paired points and elements.

        A point is inside when every barycentric weight is >= -`tolerance`
        and, for lower-dimensional elements, its distance to the element hull
        is at most ``100 * tolerance`` times the element radius.

        Returns:
            Tuple[NDArray[Any], NDArray[Any]]: Boolean mask and the weights.
        """
        elems = np.asarray(elements, dtype=np.int64).reshape(-1)
        weights, residual = self.barycentric_many(elems, points)
        inside = np.all(weights >= -tolerance, axis=1)
        if self.intrinsic_dim < self.ambient_dim:
            inside &= residual <= 100.0 * tolerance * self.radii[elems]
        return inside, weights

    # ---------------------------------------------------------------- fields
    def integrate(self, values: NDArray[Any]) -> float:
        """Integral over the mesh of the P1 field with nodal `values`."""
        vals = np.asarray(to_cpu(values), dtype=float).reshape(-1)
        if vals.shape[0] != self.n_nodes:
            raise ValueError(
                f"integrate: values length {vals.shape[0]} != n_nodes {self.n_nodes}"
            )
        return float(self.lumped_mass @ vals)

    def evaluate(
        self,
        values: NDArray[Any],
        elements: NDArray[Any],
        weights: NDArray[Any],
    ) -> NDArray[Any]:
        """Interpolate the P1 field with nodal `values` at located points.

        Args:
            values (NDArray[Any]): Nodal values, shape (n_nodes,).
            elements (NDArray[Any]): Containing element per point, shape (P,).
            weights (NDArray[Any]): Barycentric weights, shape (P, nodes_per_element).

        Returns:
            NDArray[Any]: Field values at the points, shape (P,).
        """
        vals = np.asarray(to_cpu(values), dtype=float).reshape(-1)
        elems = np.asarray(elements, dtype=np.int64).reshape(-1)
        return np.sum(np.asarray(weights) * vals[self.connectivity[elems]], axis=1)

    # -------------------------------------------------------------------- FEM
    def Bmatrix(self, element: int) -> Tuple[NDArray[Any], float]:
        """Compute the B-matrix and measure of an element.

        Args:
            element (int): Element index.

        Returns:
            Tuple[NDArray[Any], float]:
                - B (ambient_dim×nodes_per_element): Gradients of the P1 basis
                  functions in ambient coordinates, one column per node.
                - J (float): Element measure.
        """
        if element < 0 or element >= self.n_elements:
            _LOGGER.error("Bmatrix: element index out of range: %d", element)
            raise IndexError(f"element {element} out of range")
        grads = self._basis_gradients(np.array([element]))[0]  # (m+1, n)
        return grads.T.copy(), float(self.measures[element])

    def StiffnessMatrix(self, B: NDArray[Any], J: float) -> NDArray[Any]:
        """Compute the local stiffness matrix of an element.

        Args:
            B (NDArray[Any]): B-matrix from `Bmatrix`.
            J (float): Element measure from `Bmatrix`.

        Returns:
            NDArray[Any]: nodes_per_element×nodes_per_element stiffness matrix.
        """
        B_np = np.asarray(B, dtype=float)
        k = self.kind.nodes_per_element
        if B_np.shape != (self.ambient_dim, k):
            _LOGGER.error("StiffnessMatrix: unexpected B shape %s", B_np.shape)
            raise ValueError(
                f"Invalid B shape {B_np.shape}; expected ({self.ambient_dim}, {k})."
            )
        if not (np.isfinite(J) and J > 0.0):
            _LOGGER.error("StiffnessMatrix: invalid J=%r (non-finite or <= 0).", J)
            raise ValueError("Degenerate element: invalid J for stiffness.")
        return J * (B_np.T @ B_np)

    def MassMatrix(self, J: float) -> NDArray[Any]:
        """Compute the consistent local mass matrix of an element.

        Args:
            J (float): Element measure.

        Returns:
            NDArray[Any]: nodes_per_element×nodes_per_element mass matrix.
        """
        if not (np.isfinite(J) and J > 0.0):
            _LOGGER.error("MassMatrix: invalid J=%r (non-finite or <= 0).", J)
            raise ValueError("Degenerate element: invalid J for mass.")
        k = self.kind.nodes_per_element
        return J / (k * (k + 1)) * (np.ones((k, k)) + np.eye(k))

    def computeLaplacian(self) -> Tuple[sp.csr_matrix, sp.csr_matrix]:
        """Assemble global stiffness (K) and consistent mass (M) matrices as CSR.

        Returns:
            Tuple[sp.csr_matrix, sp.csr_matrix]: (K, M).
        """
        n_nodes = self.n_nodes
        n_elem, k = self.connectivity.shape

        grads = self._basis_gradients(np.arange(n_elem))  # (E, k, n)
        K_loc = self.measures[:, None, None] * (grads @ np.swapaxes(grads, 1, 2))
        M_ref = (np.ones((k, k)) + np.eye(k)) / (k * (k + 1))
        M_loc = self.measures[:, None, None] * M_ref[None, :, :]

        # Row-major local blocks: rows [t0,t0,t0,t1,...], cols [t0,t1,t2,t0,...]
        rows = np.repeat(self.connectivity, k, axis=1).ravel()
        cols = np.tile(self.connectivity, (1, k)).ravel()

        K = sp.coo_matrix(
            (K_loc.ravel(), (rows, cols)), shape=(n_nodes, n_nodes), dtype=float
        ).tocsr()
        M = sp.coo_matrix(
            (M_loc.ravel(), (rows, cols)), shape=(n_nodes, n_nodes), dtype=float
        ).tocsr()

        _LOGGER.debug(
            "computeLaplacian: assembled K/M (nodes=%d, elements=%d, nnzK=%d, nnzM=%d)",
            n_nodes,
            n_elem,
            K.nnz,
            M.nnz,
        )
        return K, M

    def _basis_gradients(self, elements: NDArray[Any]) -> NDArray[Any]:
        """Ambient gradients of the barycentric functions, shape (P, k, n)."""
        pinv = self.pinv[elements]  # rows are grad(lambda_1..lambda_m)
        grad0 = -pinv.sum(axis=1, keepdims=True)
        return np.concatenate([grad0, pinv], axis=1)

    # -------------------------------------------------------------------- I/O
    @classmethod
    def from_meshio(
        cls, m: meshio.Mesh, kind: Optional[Union[MeshKind, str]] = None
    ) -> Mesh:
        """Build a mesh from a `meshio.Mesh`.

        The highest-dimensional simplex block (tetra, then triangle, then
        line) defines the elements. Planar and network meshes stored with a
        zero third coordinate are reduced to 2-D nodes.
        """
        if kind is not None and not isinstance(kind, MeshKind):
            try:
                kind = MeshKind(kind)
            except ValueError:
                raise UnsupportedMeshKind(f"unknown mesh kind {kind!r}") from None
        verts, conn, resolved = cls._read_arrays(m, kind)
        return cls(verts=verts, connectivity=conn, kind=resolved)

    @classmethod
    def from_file(
        cls, filename: str, kind: Optional[Union[MeshKind, str]] = None
    ) -> Mesh:
        """Read a mesh file in any format supported by meshio."""
        _LOGGER.info("Reading mesh from %s", filename)
        return cls.from_meshio(meshio.read(filename), kind=kind)

    @staticmethod
    def _read_arrays(
        m: meshio.Mesh, kind: Optional[MeshKind]
    ) -> Tuple[NDArray[Any], NDArray[Any], MeshKind]:
        """Extract (verts, connectivity, kind) from a meshio mesh."""
        points = np.asarray(m.points, dtype=float)

        wanted = [kind.cell_type] if kind is not None else ["tetra", "triangle", "line"]
        conn: Optional[NDArray[Any]] = None
        cell_type = ""
        for cell_type in wanted:
            blocks = [c.data for c in m.cells if c.type == cell_type]
            if blocks:
                conn = np.concatenate(blocks, axis=0)
                break
        if conn is None:
            raise UnsupportedMeshKind(
                f"no {'/'.join(wanted)} cells in mesh (found "
                f"{sorted({c.type for c in m.cells})})"
            )

        flat = points.shape[1] == 2 or bool(
            np.all(np.abs(points[:, 2]) <= _FLAT_TOL)
        )
        if kind is not None:
            ambient = kind.ambient_dim
        elif cell_type == "tetra":
            ambient = 3
        else:
            ambient = 2 if flat else 3

        if ambient == 2:
            if not flat:
                raise UnsupportedMeshKind(
                    f"{cell_type} mesh with non-zero third coordinate is not supported"
                )
            points = points[:, :2]
        elif points.shape[1] == 2:
            points = np.column_stack([points, np.zeros(points.shape[0])])

        resolved = MeshKind.classify(ambient, conn.shape[1])
        _LOGGER.debug(
            "_read_arrays: %d points, %d %s cells -> %s",
            points.shape[0],
            conn.shape[0],
            cell_type,
            resolved.name,
        )
        return points, conn, resolved

    def writeVTU(
        self,
        filename: str,
        point_data: Optional[Dict[str, NDArray[Any]]] = None,
        cell_data: Optional[Dict[str, NDArray[Any]]] = None,
    ) -> None:
        """Export this mesh (and optional point/cell data) in VTU format.

        Planar and network meshes are written with a zero third coordinate.

        Args:
            filename: Output path (e.g., ``"mesh.vtu"``).
            point_data: Optional dict of per-node arrays.
            cell_data: Optional dict of per-element arrays.

        Raises:
            ValueError: If provided data have incompatible lengths.
        """
        pts = np.asarray(self.verts, dtype=float)
        if pts.shape[1] == 2:
            pts = np.column_stack([pts, np.zeros(pts.shape[0])])
        con = np.asarray(self.connectivity, dtype=int)
        m = meshio.Mesh(points=pts, cells=[(self.kind.cell_type, con)])

        if point_data:
            for name, arr in point_data.items():
                arr_np = np.asarray(to_cpu(arr))
                if arr_np.shape[0] != pts.shape[0]:
                    msg = (
                        f"point_data['{name}'] length {arr_np.shape[0]} "
                        f"!= n_nodes {pts.shape[0]}"
                    )
                    _LOGGER.error("writeVTU: %s", msg)
                    raise ValueError(msg)
                m.point_data[name] = arr_np

        if cell_data:
            normalized: Dict[str, List[NDArray[Any]]] = {}
            for name, arr in cell_data.items():
                arr_np = np.asarray(to_cpu(arr))
                if arr_np.shape[0] != con.shape[0]:
                    msg = (
                        f"cell_data['{name}'] length {arr_np.shape[0]} "
                        f"!= n_elements {con.shape[0]}"
                    )
                    _LOGGER.error("writeVTU: %s", msg)
                    raise ValueError(msg)
                normalized[name] = [arr_np]
            m.cell_data = normalized

        try:
            m.write(filename)
        except Exception:
            _LOGGER.exception("writeVTU failed for '%s'.", filename)
            raise
        _LOGGER.info(
            "VTU written to '%s' (nodes=%d, elements=%d, point_data=%d, cell_data=%d)",
            filename,
            pts.shape[0],
            con.shape[0],
            0 if not point_data else len(point_data),
            0 if not cell_data else len(cell_data),
        )
