"""The density_init package computes initial density fields on FEM meshes.

This package offers:
  - Linear simplicial meshes in four kinds (planar, surface, volume, network).
  - Point location by naive scan, KD-tree or walking search.
  - Heat diffusion of the data points into a smooth initial density.
  - Cross-validated choice of the smoothing parameter.

Submodules:
  - topology: Mesh kinds and their dimensions.
  - mesh: Mesh class with geometry, adjacency and FEM utilities.
  - locator: Point location strategies.
  - parameters: Diffusion settings and initialization modes.
  - heat: Point mass injection and heat diffusion.
  - cross_validation: K-fold selection of the smoothing parameter.
  - initialization: `initialize` entry point.
  - errors: Exception hierarchy.

Classes:
  Mesh, MeshKind, SearchStrategy, PointLocator, DiffusionConfig, InitMode,
  HeatDiffusion, Field, CVResult, InitResult
"""

from .config import (
    config,
    configure,
    use,
    backend_name,
    default_seed,
    xp,
    to_cpu,
    set_log_level,
)

from density_init.errors import (
    CVFailed,
    DensityInitError,
    InitializationCancelled,
    InvalidInitMode,
    InvalidInitParameter,
    InvalidSearchStrategy,
    NoPointsLocated,
    NumericalDivergence,
    PointOutsideMesh,
    UnsupportedMeshKind,
    UnsupportedSearchForMeshKind,
)
from density_init.topology import MeshKind, resolve_mesh_kind, supports_walking_search
from density_init.mesh import Mesh
from density_init.locator import (
    NaiveLocator,
    PointLocation,
    PointLocator,
    SearchStrategy,
    TreeLocator,
    WalkingLocator,
    make_locator,
)
from density_init.parameters import DiffusionConfig, InitMode
from density_init.heat import Field, HeatDiffusion, diffuse, inject
from density_init.cross_validation import CVResult, partition_folds, select_by_cv
from density_init.initialization import InitResult, heat_init, initialize

__all__ = [
    # Entry point
    "initialize",
    "heat_init",
    "InitResult",
    # Core classes
    "Mesh",
    "MeshKind",
    "SearchStrategy",
    "PointLocation",
    "PointLocator",
    "NaiveLocator",
    "TreeLocator",
    "WalkingLocator",
    "DiffusionConfig",
    "InitMode",
    "Field",
    "HeatDiffusion",
    "CVResult",
    # Functions
    "resolve_mesh_kind",
    "supports_walking_search",
    "make_locator",
    "inject",
    "diffuse",
    "partition_folds",
    "select_by_cv",
    # Errors
    "DensityInitError",
    "UnsupportedMeshKind",
    "InvalidSearchStrategy",
    "UnsupportedSearchForMeshKind",
    "InvalidInitMode",
    "InvalidInitParameter",
    "PointOutsideMesh",
    "NoPointsLocated",
    "CVFailed",
    "NumericalDivergence",
    "InitializationCancelled",
    # Configuration and backend
    "config",
    "configure",
    "use",
    "backend_name",
    "default_seed",
    "xp",
    "to_cpu",
    "set_log_level",
]
