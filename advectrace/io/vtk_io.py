# advectrace/io/vtk_io.py
"""
VTK export of assembled particle output.

Writes a ParticleOutput as XML PolyData (.vtp): points, vertex cells,
polyline cells and every point array.
"""

from __future__ import annotations
import warnings
from pathlib import Path
from typing import Union
import numpy as np

try:
    import vtk
    from vtk.util.numpy_support import numpy_to_vtk, numpy_to_vtkIdTypeArray, vtk_to_numpy
    VTK_AVAILABLE = True
except ImportError:
    VTK_AVAILABLE = False
    warnings.warn("VTK not available - VTK file writing will be disabled")

from ..tracking.output import ParticleOutput


def _cell_array(cells) -> "vtk.vtkCellArray":
    """vtkCellArray from a list of index arrays."""
    offsets = np.zeros(len(cells) + 1, dtype=np.int64)
    if cells:
        offsets[1:] = np.cumsum([len(c) for c in cells])
        connectivity = np.concatenate([np.asarray(c, dtype=np.int64) for c in cells])
    else:
        connectivity = np.zeros(0, dtype=np.int64)
    arr = vtk.vtkCellArray()
    arr.SetData(numpy_to_vtkIdTypeArray(offsets, deep=True), numpy_to_vtkIdTypeArray(connectivity, deep=True))
    return arr


def to_polydata(output: ParticleOutput) -> "vtk.vtkPolyData":
    """Build vtkPolyData from particle output."""
    if not VTK_AVAILABLE:
        raise RuntimeError("VTK not available; cannot build PolyData")

    poly = vtk.vtkPolyData()
    pts = vtk.vtkPoints()
    pts.SetData(numpy_to_vtk(np.ascontiguousarray(output.points, dtype=np.float64), deep=True))
    poly.SetPoints(pts)

    poly.SetVerts(_cell_array([[int(v)] for v in np.asarray(output.vertices).ravel()]))
    poly.SetLines(_cell_array(list(output.lines)))

    pd = poly.GetPointData()
    if output.times is not None and len(output.times) == output.num_points:
        t = numpy_to_vtk(np.ascontiguousarray(output.times, dtype=np.float64), deep=True)
        t.SetName("Time")
        pd.AddArray(t)
    for name, arr in output.arrays.items():
        data = np.ascontiguousarray(arr)
        if data.shape[0] != output.num_points:
            warnings.warn(f"Skipping array '{name}' - {data.shape[0]} rows for {output.num_points} points")
            continue
        if data.dtype == np.bool_:
            data = data.astype(np.uint8)
        vtk_arr = numpy_to_vtk(data, deep=True)
        vtk_arr.SetName(name)
        pd.AddArray(vtk_arr)
    return poly


def write_particle_output(output: ParticleOutput, path: Union[str, Path], compress: bool = True) -> str:
    """
    Write particle output to a .vtp file.

    Parameters
    ----------
    output : ParticleOutput
    path : str or Path
        Output filename (should end with .vtp)
    compress : bool
        ZLib compression of the appended data

    Returns
    -------
    str
        Path to written file
    """
    if not VTK_AVAILABLE:
        raise RuntimeError("VTK not available; cannot write .vtp files")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    writer = vtk.vtkXMLPolyDataWriter()
    writer.SetFileName(str(path))
    writer.SetInputData(to_polydata(output))
    if compress:
        writer.SetCompressorTypeToZLib()
    if writer.Write() != 1:
        raise RuntimeError(f"Failed to write {path}")
    return str(path)


def read_particle_output(path: Union[str, Path]) -> ParticleOutput:
    """Read a .vtp file written by write_particle_output."""
    if not VTK_AVAILABLE:
        raise RuntimeError("VTK not available; cannot read .vtp files")
    reader = vtk.vtkXMLPolyDataReader()
    reader.SetFileName(str(path))
    reader.Update()
    poly = reader.GetOutput()

    n = poly.GetNumberOfPoints()
    points = vtk_to_numpy(poly.GetPoints().GetData()).reshape(-1, 3) if n else np.zeros((0, 3))

    def _cells(cell_array):
        offsets = vtk_to_numpy(cell_array.GetOffsetsArray())
        conn = vtk_to_numpy(cell_array.GetConnectivityArray())
        return [conn[offsets[i]:offsets[i + 1]].astype(np.int64) for i in range(len(offsets) - 1)]

    pd = poly.GetPointData()
    arrays = {}
    times = None
    for i in range(pd.GetNumberOfArrays()):
        name = pd.GetArrayName(i)
        values = vtk_to_numpy(pd.GetArray(i))
        if name == "Time":
            times = values
        else:
            arrays[name] = values
    verts = _cells(poly.GetVerts())
    return ParticleOutput(
        points=np.asarray(points, dtype=np.float64),
        times=times,
        arrays=arrays,
        lines=_cells(poly.GetLines()),
        vertices=np.asarray([v[0] for v in verts], dtype=np.int64),
    )
