"""
Free Vibration of a Cantilever Released From a Static Deflection
================================================================

This script:
1. Solves the static deflection under a tip load on a dynamic System
2. Removes the load and marches in time (trapezoidal rule)
3. Compares the tip period with the Euler-Bernoulli first bending mode
4. Writes the history to HDF5 and VTK
"""

import sys
from pathlib import Path

import numpy as np

# --- Path Setup ---
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

# --- Library Imports ---
from IntrinsicBeam.Objects.Assembly import Assembly
from IntrinsicBeam.Objects.Conditions import PrescribedConditions
from IntrinsicBeam.Objects.Section import SectionBeam
from IntrinsicBeam.Solvers.Dynamic import solve_time_domain
from IntrinsicBeam.Solvers.Plotter import Plotter
from IntrinsicBeam.Solvers.Static import solve_static
from IntrinsicBeam.Structures.System import System
from IntrinsicBeam.Utils.vtk_export import VTKExporter

# =============================================================================
# Configuration
# =============================================================================

L = 1.0
N_ELEM = 16
SECTION = SectionBeam.rectangle(E=70e9, G=26e9, b=0.03, h=0.005, rho=2700.0)
P0 = 5.0          # Initial tip load [N]
N_PERIODS = 3
STEPS_PER_PERIOD = 80

OUTPUT_DIR = project_root / "Examples" / "Results" / "Dynamic"


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    x = np.linspace(0.0, L, N_ELEM + 1)
    points = np.column_stack((x, np.zeros_like(x), np.zeros_like(x)))
    assembly = Assembly(points, np.arange(N_ELEM), np.arange(1, N_ELEM + 1),
                        SECTION.compliance(), mass=SECTION.mass())

    EI = SECTION.E * SECTION.Iy
    mu = SECTION.rho * SECTION.A
    omega = 1.8751 ** 2 * np.sqrt(EI / (mu * L ** 4))
    period = 2 * np.pi / omega
    dt = period / STEPS_PER_PERIOD

    clamp = PrescribedConditions(ux=0, uy=0, uz=0, theta_x=0, theta_y=0, theta_z=0)
    system = System(assembly, kept_points=[0, N_ELEM], dynamic=True)
    system, _ = solve_static(assembly, {0: clamp, N_ELEM: PrescribedConditions(Fz=P0)},
                             system=system)

    system, history, converged = solve_time_domain(
        assembly, dt, {0: clamp, N_ELEM: PrescribedConditions()},
        num_steps=N_PERIODS * STEPS_PER_PERIOD, system=system,
        filename="cantilever_release", dir_name=str(OUTPUT_DIR))

    tip = np.array([s.points[N_ELEM].u[2] for s in history])
    t = np.array([s.t for s in history])
    # Downward zero crossings give the period
    crossings = t[1:][(tip[:-1] > 0) & (tip[1:] <= 0)]
    measured = np.mean(np.diff(crossings)) if crossings.size > 1 else np.nan

    print("=" * 70)
    print("  CANTILEVER FREE VIBRATION")
    print("=" * 70)
    print(f"\n  Converged: {converged}, {len(history) - 1} steps of {dt:.3e} s")
    print(f"  Euler-Bernoulli period: {period:.5f} s")
    print(f"  Measured period:        {measured:.5f} s")

    Plotter.plot_history(history, point=N_ELEM, field="u", component=2,
                         save=OUTPUT_DIR / "tip_history.png", show=False)
    VTKExporter(assembly).export_history(str(OUTPUT_DIR / "vtk" / "release"),
                                         history[::STEPS_PER_PERIOD // 8],
                                         deformation_scale=5.0)


if __name__ == "__main__":
    main()
