"""
advectrace system diagnostics and requirement checking.

Reports which optional back-ends (JAX kernels, HDF5 particle writing, VTK
export, MPI migration) are usable in the current environment.
"""

from typing import Dict

from .jax_utils import JAX_AVAILABLE, default_device_kind, get_jax_version


def check_system_requirements(verbose: bool = True) -> Dict[str, bool]:
    """
    Check core and optional dependencies.

    Parameters
    ----------
    verbose : bool, default True
        Whether to print detailed status information

    Returns
    -------
    Dict[str, bool]
        Dictionary mapping requirement names to availability status
    """
    if verbose:
        print("Checking advectrace system requirements...")

    requirements = {
        'advectrace': True,
        'numpy': True,
    }

    try:
        import scipy
        requirements['scipy'] = True
        if verbose:
            print(f"   scipy: v{scipy.__version__} (cell and point locators enabled)")
    except ImportError:
        requirements['scipy'] = False
        if verbose:
            print("   scipy: not available (tetrahedral blocks disabled)")

    requirements["jax"] = JAX_AVAILABLE
    if verbose:
        if JAX_AVAILABLE:
            print(f"   JAX: v{get_jax_version()} on {default_device_kind()}")
        else:
            print("   JAX: not available (NumPy kernels)")

    try:
        import h5py
        requirements['h5py'] = True
        if verbose:
            print(f"   h5py: v{h5py.__version__} (particle writing enabled)")
    except ImportError:
        requirements['h5py'] = False
        if verbose:
            print("   h5py: not available (particle writing disabled)")

    try:
        import vtk
        requirements['vtk'] = True
        if verbose:
            print(f"   VTK: v{vtk.vtkVersion.GetVTKVersion()} (.vtp export enabled)")
    except ImportError:
        requirements['vtk'] = False
        if verbose:
            print("   VTK: not available (.vtp export disabled)")

    try:
        from mpi4py import MPI
        requirements['mpi4py'] = True
        if verbose:
            print(f"   mpi4py: {MPI.Get_library_version().splitlines()[0]}")
    except ImportError:
        requirements['mpi4py'] = False
        if verbose:
            print("   mpi4py: not available (in-process communicators only)")

    try:
        import tqdm  # noqa: F401
        requirements['tqdm'] = True
    except ImportError:
        requirements['tqdm'] = False

    if verbose and not requirements['scipy']:
        print("\nInstall SciPy for unstructured blocks: pip install scipy")

    return requirements
