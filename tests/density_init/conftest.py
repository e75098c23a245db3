from __future__ import annotations
import itertools

import pytest

import numpy as np
from density_init.mesh import Mesh


def _gpu_available() -> bool:
    try:
        import cupy

        return cupy.cuda.runtime.getDeviceCount() > 0
    except Exception:
        return False


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Auto-skip tests marked 'gpu' when no CUDA device is present."""
    if _gpu_available():
        return
    skip_marker = pytest.mark.skip(reason="GPU not available for CuPy.")
    for item in items:
        if "gpu" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture()
def di_cpu():
    import density_init as di

    with di.use("cpu", seed=0, strict=False):
        yield di


@pytest.fixture()
def di_gpu():
    if not _gpu_available():
        pytest.skip("No CUDA device available for CuPy.")
    import density_init as di

    with di.use("gpu", seed=0, strict=True):
        yield di


def square_grid(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Unit square with n×n cells, each split along its (i,j)-(i+1,j+1) diagonal."""
    xs = np.linspace(0.0, 1.0, n + 1)
    X, Y = np.meshgrid(xs, xs)  # node (i, j) has index j*(n+1)+i
    verts = np.column_stack([X.ravel(), Y.ravel()])
    tris = []
    for j in range(n):
        for i in range(n):
            a = j * (n + 1) + i
            b, c, d = a + 1, a + n + 2, a + n + 1
            tris.append([a, b, c])
            tris.append([a, c, d])
    return verts, np.array(tris, dtype=int)


def cube_grid(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Unit cube with n³ cells, each split into the six Kuhn tetrahedra."""
    xs = np.linspace(0.0, 1.0, n + 1)
    Z, Y, X = np.meshgrid(xs, xs, xs, indexing="ij")  # index = (k*(n+1)+j)*(n+1)+i
    verts = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])
    stride = np.array([1, n + 1, (n + 1) ** 2])
    tets = []
    for k in range(n):
        for j in range(n):
            for i in range(n):
                origin = np.array([i, j, k])
                for perm in itertools.permutations(range(3)):
                    corner = origin.copy()
                    tet = [int(corner @ stride)]
                    for axis in perm:
                        corner[axis] += 1
                        tet.append(int(corner @ stride))
                    tets.append(tet)
    return verts, np.array(tets, dtype=int)


def lift_to_plane(points: np.ndarray) -> np.ndarray:
    """Map planar points onto the inclined plane z = 0.3 x + 0.2 y."""
    points = np.atleast_2d(points)
    return np.column_stack([points, 0.3 * points[:, 0] + 0.2 * points[:, 1]])


@pytest.fixture
def two_triangle_square():
    """
    Unit square split into two triangles along the diagonal (0-2):
      v3 (0,1) ---- v2 (1,1)
        |           /  |
        |         /    |
        |       /      |
      v0 (0,0) ---- v1 (1,0)
    Triangles: [0,1,2] and [0,2,3]
    """
    verts = np.array(
        [
            [0.0, 0.0],  # v0
            [1.0, 0.0],  # v1
            [1.0, 1.0],  # v2
            [0.0, 1.0],  # v3
        ],
        dtype=float,
    )
    conn = np.array([[0, 1, 2], [0, 2, 3]], dtype=int)
    return Mesh(verts=verts, connectivity=conn)


@pytest.fixture
def planar_mesh():
    """Planar unit square, 8×8 cells."""
    verts, conn = square_grid(8)
    return Mesh(verts=verts, connectivity=conn)


@pytest.fixture
def l_shaped_mesh():
    """8×8 unit square with the upper-right quarter (0.5, 1]² removed."""
    verts, conn = square_grid(8)
    centroids = verts[conn].mean(axis=1)
    conn = conn[~np.all(centroids > 0.5, axis=1)]
    used, conn = np.unique(conn, return_inverse=True)
    return Mesh(verts=verts[used], connectivity=conn.reshape(-1, 3))


@pytest.fixture
def surface_mesh():
    """8×8 square grid lifted onto an inclined plane in 3-D."""
    verts, conn = square_grid(8)
    return Mesh(verts=lift_to_plane(verts), connectivity=conn)


@pytest.fixture
def volume_mesh():
    """Unit cube, 2×2×2 cells of six tetrahedra each."""
    verts, conn = cube_grid(2)
    return Mesh(verts=verts, connectivity=conn)


@pytest.fixture
def network_mesh():
    """L-shaped polyline (0,0)->(1,0)->(1,1) with segments of length 0.25."""
    t = np.linspace(0.0, 1.0, 5)
    verts = np.vstack(
        [
            np.column_stack([t, np.zeros_like(t)]),
            np.column_stack([np.ones(4), t[1:]]),
        ]
    )
    conn = np.column_stack([np.arange(8), np.arange(1, 9)])
    return Mesh(verts=verts, connectivity=conn)


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def make_square_mesh():
    """Factory: planar (or, with ``lift=True``, surface) n×n square grid."""

    def _make(n: int, lift: bool = False) -> Mesh:
        verts, conn = square_grid(n)
        return Mesh(verts=lift_to_plane(verts) if lift else verts, connectivity=conn)

    return _make


@pytest.fixture
def make_cube_mesh():
    """Factory: Kuhn tetrahedral n×n×n cube grid."""

    def _make(n: int) -> Mesh:
        verts, conn = cube_grid(n)
        return Mesh(verts=verts, connectivity=conn)

    return _make


@pytest.fixture
def lift():
    return lift_to_plane
