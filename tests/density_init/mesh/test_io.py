import meshio
import numpy as np
import pytest
from numpy.testing import assert_allclose

from density_init.errors import UnsupportedMeshKind
from density_init.mesh import Mesh
from density_init.topology import MeshKind


@pytest.mark.parametrize(
    "fixture,kind",
    [
        ("planar_mesh", MeshKind.PLANAR_2D),
        ("surface_mesh", MeshKind.SURFACE_2_5D),
        ("volume_mesh", MeshKind.VOLUME_3D),
        ("network_mesh", MeshKind.NETWORK_1_5D),
    ],
)
def test_write_vtu_roundtrip(request, tmp_path, fixture, kind):
    mesh = request.getfixturevalue(fixture)
    out = tmp_path / "mesh.vtu"
    f = np.arange(mesh.n_nodes, dtype=float)
    mesh.writeVTU(
        str(out),
        point_data={"f": f},
        cell_data={"measure": mesh.measures},
    )

    m = meshio.read(str(out))
    assert m.points.shape == (mesh.n_nodes, 3)
    assert_allclose(m.point_data["f"], f)

    back = Mesh.from_file(str(out))
    assert back.kind is kind
    assert_allclose(back.verts, mesh.verts)
    assert np.array_equal(back.connectivity, mesh.connectivity)

    via_ctor = Mesh(filename=str(out))
    assert via_ctor.kind is kind


def test_write_vtu_rejects_bad_lengths(two_triangle_square, tmp_path):
    out = str(tmp_path / "bad.vtu")
    with pytest.raises(ValueError):
        two_triangle_square.writeVTU(out, point_data={"f": np.zeros(3)})
    with pytest.raises(ValueError):
        two_triangle_square.writeVTU(out, cell_data={"c": np.zeros(5)})


def test_from_meshio_prefers_highest_dimension():
    points = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
    )
    m = meshio.Mesh(
        points=points,
        cells=[("triangle", np.array([[0, 1, 2]])), ("tetra", np.array([[0, 1, 2, 3]]))],
    )
    mesh = Mesh.from_meshio(m)
    assert mesh.kind is MeshKind.VOLUME_3D
    assert mesh.n_elements == 1

    surface = Mesh.from_meshio(m, kind="mesh.2.5D")
    assert surface.kind is MeshKind.SURFACE_2_5D


def test_from_meshio_without_simplices_raises():
    m = meshio.Mesh(points=np.zeros((2, 3)), cells=[("vertex", np.array([[0], [1]]))])
    with pytest.raises(UnsupportedMeshKind):
        Mesh.from_meshio(m)


def test_from_meshio_non_flat_planar_raises():
    points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.5], [0.0, 1.0, 0.0]])
    m = meshio.Mesh(points=points, cells=[("triangle", np.array([[0, 1, 2]]))])
    with pytest.raises(UnsupportedMeshKind):
        Mesh.from_meshio(m, kind=MeshKind.PLANAR_2D)
