"""
Cantilever Under a Tip Load - Linear vs Nonlinear
=================================================

This script loads a cantilever with a transverse tip force of increasing
magnitude and compares:
1. The linear solution (one step about the undeformed state)
2. The geometrically exact solution (force control, warm started)

At large loads the nonlinear tip deflection saturates while the linear one
grows without bound.
"""

import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

# --- Path Setup ---
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

# --- Library Imports ---
from IntrinsicBeam.Objects.Assembly import build_assembly
from IntrinsicBeam.Objects.Conditions import PrescribedConditions
from IntrinsicBeam.Objects.Section import SectionBeam
from IntrinsicBeam.Solvers.Plotter import Plotter
from IntrinsicBeam.Solvers.Static import StaticNonLinear, solve_static
from IntrinsicBeam.Structures.State import extract_state
from IntrinsicBeam.Utils.discretize import discretize_beam
from IntrinsicBeam.Utils.vtk_export import export_vtk

# =============================================================================
# Configuration
# =============================================================================

# Beam geometry
L = 1.0      # Length [m]
b = 0.02     # Width [m]
h = 0.01     # Height [m]
N_ELEM = 20  # Number of elements

# Material (Steel)
E = 210e9    # Young's modulus [Pa]
G = 81e9     # Shear modulus [Pa]

# Loading: non-dimensional load P L^2 / EI
LOAD_LEVELS = np.linspace(0.0, 10.0, 11)

# Output directory
OUTPUT_DIR = project_root / "Examples" / "Results" / "Static"


# =============================================================================
# Model
# =============================================================================

def create_cantilever():
    """Straight steel cantilever along x, clamped at point 0."""
    section = SectionBeam.rectangle(E=E, G=G, b=b, h=h)
    lengths, points, midpoints, frames = discretize_beam(L, [0.0, 0.0, 0.0], N_ELEM)
    endpoints = [(i, i + 1) for i in range(N_ELEM)]
    assembly = build_assembly(points, endpoints, section.compliance(), frames=frames,
                              lengths=lengths, midpoints=midpoints)
    return assembly, section


def conditions(P):
    return {
        0: PrescribedConditions(ux=0, uy=0, uz=0, theta_x=0, theta_y=0, theta_z=0),
        N_ELEM: PrescribedConditions(Fz=P),
    }


# =============================================================================
# Main
# =============================================================================

def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    assembly, section = create_cantilever()
    EI = section.E * section.Iy

    print("=" * 70)
    print("  CANTILEVER UNDER TIP LOAD")
    print("=" * 70)
    print(f"\n  Geometry: L={L}m, {b * 1e3:.0f}x{h * 1e3:.0f} mm, {N_ELEM} elements")
    print(f"  EI = {EI:.3e} N.m^2\n")

    system = None
    linear, nonlinear = [], []
    for k in LOAD_LEVELS:
        P = k * EI / L ** 2
        lin, _ = solve_static(assembly, conditions(P), linear=True)
        linear.append(extract_state(lin, assembly).points[N_ELEM].u[2])

        # Warm start from the previous load level
        system, converged = StaticNonLinear.solve_forcecontrol(assembly, conditions(P),
                                                               steps=4, system=system)
        tip = extract_state(system, assembly).points[N_ELEM]
        nonlinear.append(tip.u[2])
        print(f"  PL^2/EI={k:5.1f}: linear w/L={linear[-1] / L:8.4f}, "
              f"nonlinear w/L={tip.u[2] / L:7.4f}, u/L={tip.u[0] / L:8.4f}, "
              f"converged={converged}")

    fig, ax = plt.subplots()
    ax.plot(LOAD_LEVELS, np.array(linear) / L, "--", label="Linear")
    ax.plot(LOAD_LEVELS, np.array(nonlinear) / L, "o-", label="Nonlinear")
    ax.set_xlabel(r"$PL^2/EI$")
    ax.set_ylabel(r"$w/L$")
    ax.set_ylim(0.0, 1.0)
    ax.grid(True)
    ax.legend()
    fig.savefig(OUTPUT_DIR / "tip_deflection.png", dpi=150)

    state = extract_state(system, assembly)
    Plotter.plot_assembly(assembly, state, save=OUTPUT_DIR / "deformed.png", show=False)
    export_vtk(assembly, str(OUTPUT_DIR / "cantilever"), state)
    print(f"\n  Results saved to: {OUTPUT_DIR}")


if __name__ == "__main__":
    main()
