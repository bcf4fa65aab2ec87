#!/usr/bin/env python3
"""
advectrace command-line interface.

Usage:
    python -m advectrace --check                     # Report optional dependencies
    python -m advectrace --field rotation --steps 20 # Trace a synthetic field
    python -m advectrace --input series.h5 --h5 out.h5 --vtp out.vtp
"""

import argparse
import sys
from pathlib import Path

import numpy as np


def _synthetic_provider(name: str, end_time: float, n_times: int):
    from .fields import FunctionTemporalDataset, constant_velocity, solid_body_rotation

    fields = {
        "rotation": solid_body_rotation(omega=1.0),
        "uniform": constant_velocity((1.0, 0.0, 0.0)),
    }
    if name not in fields:
        raise ValueError(f"Unknown synthetic field '{name}'. Available: {sorted(fields)}")
    box = ((-2.0, 2.0), (-2.0, 2.0), (-0.5, 0.5))
    return FunctionTemporalDataset(
        velocity_function=fields[name],
        times=np.linspace(0.0, end_time, n_times),
        boxes=[box],
        resolution=(21, 21, 3),
    )


def run(args) -> int:
    from .tracking import (
        ParticleTracer,
        SeedSource,
        TracerOptions,
        get_assembler,
        line_seeds,
    )
    from .utils.logging import timeit

    if args.input:
        from .io import H5SnapshotSeries
        provider = H5SnapshotSeries(args.input, dataset=args.dataset)
    else:
        provider = _synthetic_provider(args.field, args.end_time, args.steps + 1)

    times = np.asarray(provider.times, dtype=float)
    seeds = SeedSource(line_seeds(args.seed_start, args.seed_end, args.num_seeds))

    writer = None
    if args.h5:
        from .io import H5ParticleWriter
        writer = H5ParticleWriter(args.h5)

    options = TracerOptions(
        integrator=args.integrator,
        integration_step=args.step,
        enable_particle_writing=writer is not None,
        reinjection_every_n_steps=args.reinject,
        progress_style=args.progress,
        verbose=args.verbose,
    )
    targets = np.linspace(times[0], times[-1], args.steps + 1)

    with ParticleTracer(provider, seeds, options, writer=writer, assembler=get_assembler(args.geometry)) as tracer:
        with timeit("Advection", verbose=args.verbose):
            for t in targets:
                output = tracer.execute(float(t))

    print(f"Final time {targets[-1]:g}: {len(tracer.population)} particles alive, "
          f"{output.num_points} output points, {output.num_lines} lines")

    if args.vtp:
        from .io import write_particle_output
        path = write_particle_output(output, args.vtp)
        print(f"Output written to: {path}")
    return 0


def main(argv=None) -> int:
    """Command-line interface for advectrace."""
    from . import __version__

    parser = argparse.ArgumentParser(
        prog="advectrace",
        description="advectrace - particle advection through time-varying vector fields",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m advectrace --check
  python -m advectrace --field rotation --steps 20 --geometry pathline --vtp paths.vtp
  python -m advectrace --input series.h5 --integrator rk45 --h5 particles.h5
""",
    )
    parser.add_argument("--version", action="version", version=f"advectrace {__version__}")
    parser.add_argument("--check", action="store_true", help="Report optional dependencies and exit")
    parser.add_argument("--input", type=str, help="HDF5 velocity series (see H5SnapshotSeries)")
    parser.add_argument("--dataset", type=str, default="velocity", help="Dataset path in the input file")
    parser.add_argument("--field", type=str, default="rotation", help="Synthetic field when no input is given")
    parser.add_argument("--end-time", type=float, default=2.0 * np.pi)
    parser.add_argument("--steps", type=int, default=20, help="Number of execute() requests")
    parser.add_argument("--integrator", type=str, default="rk4", choices=["rk2", "rk4", "rk45"])
    parser.add_argument("--step", type=float, default=0.1, help="Maximum integration step")
    parser.add_argument("--num-seeds", type=int, default=10)
    parser.add_argument("--seed-start", type=float, nargs=3, default=[0.2, 0.0, 0.0])
    parser.add_argument("--seed-end", type=float, nargs=3, default=[1.5, 0.0, 0.0])
    parser.add_argument("--reinject", type=int, default=0, help="Reinject seeds every N steps (0 = once)")
    parser.add_argument("--geometry", type=str, default="front", choices=["front", "pathline", "streakline"])
    parser.add_argument("--h5", type=str, help="Write particles to this HDF5 file every step")
    parser.add_argument("--vtp", type=str, help="Write the final output geometry to this .vtp file")
    parser.add_argument("--progress", type=str, default="none", choices=["auto", "tqdm", "simple", "none"])
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args(argv)

    if args.check:
        from .utils.diagnostics import check_system_requirements
        status = check_system_requirements(verbose=True)
        return 0 if status.get("scipy", False) else 1

    if args.input and not Path(args.input).exists():
        print(f"Error: input file not found: {args.input}")
        return 1
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
