"""
Modes of a Cantilevered Blade Under Tension
===========================================

Natural frequencies of a slender blade clamped at the root, first unloaded,
then linearized about a steady state with an axial tip force. The tension
stiffens the bending modes. Left eigenvectors are checked for
biorthonormality (w_i^T B v_j = delta_ij).
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
from IntrinsicBeam.Solvers.Modal import derive_left_eigenvectors, solve_eigen

# =============================================================================
# Configuration
# =============================================================================

L = 16.0
N_ELEM = 20
NUM_MODES = 8

# Section stiffness and mass per unit length
STIFFNESS = np.array([1.5e9, np.inf, np.inf, 1.0e6, 2.5e6, 2.5e7])
COMPLIANCE = np.diag([0.0 if np.isinf(k) else 1.0 / k for k in STIFFNESS])
MASS = np.diag([10.0, 10.0, 10.0, 0.5, 0.05, 0.45])

TIP_FORCES = [0.0, 5e4, 1e5]


def main():
    x = np.linspace(0.0, L, N_ELEM + 1)
    points = np.column_stack((x, np.zeros_like(x), np.zeros_like(x)))
    assembly = Assembly(points, np.arange(N_ELEM), np.arange(1, N_ELEM + 1), COMPLIANCE,
                        mass=MASS)
    clamp = PrescribedConditions(ux=0, uy=0, uz=0, theta_x=0, theta_y=0, theta_z=0)

    print("=" * 70)
    print("  BLADE MODES UNDER TENSION")
    print("=" * 70)
    for T in TIP_FORCES:
        pc = {0: clamp, N_ELEM: PrescribedConditions(Fx=T)}
        system, lam, V, converged = solve_eigen(assembly, pc, NUM_MODES)
        freqs = np.unique(np.round(np.abs(lam.imag) / (2 * np.pi), 6))
        print(f"\n  Tip tension {T:.1e} N (converged={converged})")
        print("  Frequencies [Hz]: " + ", ".join(f"{f:.3f}" for f in freqs))

        W = derive_left_eigenvectors(system, lam, V)
        B = system.eigen_matrices[1]
        G = W.T @ (B @ V)
        print(f"  max |W^T B V - I| = {np.max(np.abs(G - np.eye(len(lam)))):.2e}")


if __name__ == "__main__":
    main()
