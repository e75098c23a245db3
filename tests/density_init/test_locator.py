import numpy as np
import pytest
from numpy.testing import assert_allclose

from density_init.errors import (
    InvalidSearchStrategy,
    PointOutsideMesh,
    UnsupportedSearchForMeshKind,
)
from density_init.locator import (
    NaiveLocator,
    PointLocation,
    SearchStrategy,
    TreeLocator,
    WalkingLocator,
    check_search_for_mesh,
    make_locator,
)
from density_init.topology import MeshKind


@pytest.mark.parametrize(
    "value,expected",
    [
        ("naive", SearchStrategy.NAIVE),
        ("Tree", SearchStrategy.TREE),
        (" WALKING ", SearchStrategy.WALKING),
        (SearchStrategy.TREE, SearchStrategy.TREE),
    ],
)
def test_parse_strategy(value, expected):
    assert SearchStrategy.parse(value) is expected


@pytest.mark.parametrize("value", ["kdtree", "", 2, None])
def test_parse_strategy_rejects_unknown(value):
    with pytest.raises(InvalidSearchStrategy):
        SearchStrategy.parse(value)


def test_strategy_codes():
    assert [s.value for s in SearchStrategy] == [1, 2, 3]


@pytest.mark.parametrize("kind", [MeshKind.SURFACE_2_5D, MeshKind.NETWORK_1_5D])
def test_walking_rejected_on_lower_dimensional_kinds(kind):
    with pytest.raises(UnsupportedSearchForMeshKind) as exc:
        check_search_for_mesh(SearchStrategy.WALKING, kind)
    assert kind.value in str(exc.value)
    check_search_for_mesh(SearchStrategy.TREE, kind)
    check_search_for_mesh(SearchStrategy.NAIVE, kind)


def test_walking_locator_cannot_be_built_on_surface(surface_mesh, network_mesh):
    with pytest.raises(UnsupportedSearchForMeshKind):
        make_locator(surface_mesh, "walking")
    with pytest.raises(UnsupportedSearchForMeshKind):
        WalkingLocator(network_mesh)


def test_make_locator_types(planar_mesh):
    assert isinstance(make_locator(planar_mesh, "naive"), NaiveLocator)
    assert isinstance(make_locator(planar_mesh), TreeLocator)
    assert isinstance(make_locator(planar_mesh, SearchStrategy.WALKING), WalkingLocator)


def test_shared_diagonal_goes_to_lowest_element(two_triangle_square):
    for search in SearchStrategy:
        loc = make_locator(two_triangle_square, search)
        assert loc.locate(np.array([0.5, 0.5])) == 0
        elem, w = loc.find(np.array([0.5, 0.5]))
        assert elem == 0
        assert_allclose(w, [0.5, 0.0, 0.5], atol=1e-12)


def test_locate_outside_raises(two_triangle_square):
    for search in SearchStrategy:
        loc = make_locator(two_triangle_square, search)
        with pytest.raises(PointOutsideMesh) as exc:
            loc.locate(np.array([1.5, 0.5]))
        assert exc.value.point == [1.5, 0.5]


def test_locate_rejects_wrong_dimension(two_triangle_square):
    with pytest.raises(ValueError):
        make_locator(two_triangle_square).locate(np.array([0.5, 0.5, 0.0]))


@pytest.mark.parametrize("fixture", ["planar_mesh", "volume_mesh", "l_shaped_mesh"])
def test_all_strategies_agree(request, rng, fixture):
    mesh = request.getfixturevalue(fixture)
    pts = rng.uniform(-0.1, 1.1, size=(300, mesh.ambient_dim))
    pts = np.vstack([pts, mesh.verts[:10], mesh.centroids[:10]])

    results = {s: make_locator(mesh, s).locate_many(pts) for s in SearchStrategy}
    ref = results[SearchStrategy.NAIVE]
    assert 0 < ref.n_outside < len(ref)
    for s, loc in results.items():
        assert np.array_equal(loc.elements, ref.elements), s
        assert_allclose(loc.weights, ref.weights, atol=1e-12)

    inside = np.all((pts >= 0.0) & (pts <= 1.0), axis=1)
    if fixture == "l_shaped_mesh":
        inside &= ~np.all(pts > 0.5, axis=1)
    assert np.array_equal(ref.located, inside)


def test_walking_crosses_the_notch_of_an_l_shaped_mesh(l_shaped_mesh):
    pts = np.array([[0.9, 0.45], [0.45, 0.9]])
    naive = make_locator(l_shaped_mesh, "naive").locate_many(pts)
    walking = make_locator(l_shaped_mesh, "walking").locate_many(pts)
    assert naive.n_outside == 0
    assert np.array_equal(walking.elements, naive.elements)

    walker = WalkingLocator(l_shaped_mesh)
    elem, _ = walker.find(pts[1], start=int(naive.elements[0]))
    assert elem == naive.elements[1]
    assert walker.find(np.array([0.8, 0.8]), start=int(naive.elements[0]))[0] == -1


@pytest.mark.parametrize("fixture", ["surface_mesh", "network_mesh"])
def test_naive_and_tree_agree_on_embedded_meshes(request, rng, lift, fixture):
    mesh = request.getfixturevalue(fixture)
    if mesh.kind is MeshKind.SURFACE_2_5D:
        pts = lift(rng.uniform(0.0, 1.0, size=(200, 2)))
    else:
        elems = rng.integers(0, mesh.n_elements, size=200)
        t = rng.uniform(0.0, 1.0, size=(200, 1))
        a = mesh.verts[mesh.connectivity[elems, 0]]
        b = mesh.verts[mesh.connectivity[elems, 1]]
        pts = a + t * (b - a)

    naive = make_locator(mesh, "naive").locate_many(pts)
    tree = make_locator(mesh, "tree").locate_many(pts)
    assert naive.n_outside == 0
    assert np.array_equal(naive.elements, tree.elements)


def test_off_network_points_are_outside(network_mesh):
    pts = np.array([[0.5, 0.1], [0.5, 0.0], [1.0, 0.5], [0.2, 0.2]])
    loc = make_locator(network_mesh).locate_many(pts)
    assert loc.located.tolist() == [False, True, True, False]


def test_walking_follows_previous_element(make_square_mesh):
    mesh = make_square_mesh(20)
    loc = make_locator(mesh, "walking")
    start = loc.locate(np.array([0.01, 0.02]))
    elem, _ = loc.find(np.array([0.97, 0.99]), start=start)
    assert elem == make_locator(mesh, "naive").locate(np.array([0.97, 0.99]))


def test_locate_many_logs_outside_once(two_triangle_square, caplog):
    pts = np.array([[0.2, 0.1], [2.0, 2.0], [3.0, 3.0]])
    with caplog.at_level("WARNING", logger="density_init"):
        loc = make_locator(two_triangle_square).locate_many(pts)
    assert loc.n_outside == 2
    warnings = [r for r in caplog.records if r.levelname == "WARNING"]
    assert len(warnings) == 1
    assert "2 of 3 points" in warnings[0].getMessage()


def test_point_location_subset():
    loc = PointLocation(
        elements=np.array([3, -1, 0]),
        weights=np.array([[1.0, 0, 0], [0, 0, 0], [0, 1.0, 0]]),
    )
    sub = loc.subset(np.array([1, 2]))
    assert len(sub) == 2
    assert sub.n_located == 1
    assert sub.n_outside == 1
    assert sub.elements.tolist() == [-1, 0]
