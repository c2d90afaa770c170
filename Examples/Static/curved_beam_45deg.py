"""
45-Degree Curved Cantilever - Out-of-Plane Tip Load
===================================================

Classic benchmark of geometrically exact beams (Bathe and Bolourchi, 1979): a
45 degree circular arc of radius 100 in the x-y plane, clamped at one end and
loaded at the other by a dead force along z.

Reference tip position at P = 600 (Bathe and Bolourchi):
    x = 47.23, y = 15.69, z = 53.37
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
from IntrinsicBeam.Solvers.Static import StaticNonLinear
from IntrinsicBeam.Structures.State import extract_state
from IntrinsicBeam.Utils.discretize import discretize_beam

# =============================================================================
# Configuration
# =============================================================================

R = 100.0            # Radius
SWEEP = np.pi / 4    # Arc angle
N_ELEM = 16
P = 600.0            # Tip load

# Unit square section, E = 1e7, G = 5e6, J = 0.1406
EA, GJ, EI = 1e7, 5e6 * 0.1406, 1e7 / 12
COMPLIANCE = np.diag([1 / EA, 0.0, 0.0, 1 / GJ, 1 / EI, 1 / EI])

# Initial frame: tangent along +x, the arc turns toward +y
FRAME = np.eye(3)


def main():
    L = R * SWEEP
    lengths, points, midpoints, frames = discretize_beam(
        L, [0.0, 0.0, 0.0], N_ELEM, frame=FRAME, curvature=[0.0, 0.0, 1.0 / R])
    assembly = Assembly(points, np.arange(N_ELEM), np.arange(1, N_ELEM + 1), COMPLIANCE,
                        frames=frames, lengths=lengths, midpoints=midpoints)

    pc = {0: PrescribedConditions(ux=0, uy=0, uz=0, theta_x=0, theta_y=0, theta_z=0),
          N_ELEM: PrescribedConditions(Fz=P)}

    print("=" * 70)
    print("  45-DEGREE BEND")
    print("=" * 70)
    system, converged = StaticNonLinear.solve_forcecontrol(assembly, pc, steps=10)
    state = extract_state(system, assembly)
    tip = np.asarray(assembly.points[N_ELEM]) + state.points[N_ELEM].u

    print(f"\n  Converged: {converged}")
    print(f"  Tip position: x={tip[0]:.2f}, y={tip[1]:.2f}, z={tip[2]:.2f}")
    print("  Reference:    x=47.23, y=15.69, z=53.37")


if __name__ == "__main__":
    main()
