"""
Modal Solver - Linearized Eigen-Analysis
========================================

Small motions about a steady state x_s satisfy

    A dx + (-B) dxdot = 0,    A = dR/dx,  B = -dR/dxdot

so modes dx = v exp(lambda t) solve the generalized eigenproblem

    A v = lambda B v

For an undamped structure the eigenvalues come in conjugate pairs
lambda = +/- i omega. B is singular (compatibility and equilibrium rows carry
no rates), so the pencil also has infinite eigenvalues; they are removed.

Shift-invert: with sigma the shift, the eigenvalues mu of (A - sigma B)^-1 B
give lambda = sigma + 1/mu, and the modes closest to sigma have the largest
|mu|, which is what ARPACK resolves best.
"""

import logging
import time
import warnings

import numpy as np
import scipy.linalg as la  # Dense Linear Algebra
import scipy.sparse.linalg as spla  # Sparse Linear Algebra

from IntrinsicBeam.Solvers.Static import (
    SingularSystemError,
    SolverConstants,
    StaticBase,
    StaticLinear,
    StaticNonLinear,
)

logger = logging.getLogger(__name__)

INFINITE_EIGENVALUE = 1e12   # |lambda - sigma| above this is treated as infinite
LEFT_SHIFT = 1e-10           # Relative shift perturbation for inverse iteration
LEFT_ITERATIONS = 3          # Inverse iterations per left eigenvector block
LEFT_CLUSTER = 1e-6          # Relative gap below which eigenvalues share a left block


class Modal(StaticBase):
    """Eigen-analysis solver for natural frequencies and mode shapes."""

    def __init__(self, nev=None, sigma=0.0, find_steady_state=True, linear=False,
                 left=False, tol=0.0, maxiter=None, filename=None, dir_name="",
                 **newton_kwargs):
        if nev is not None and int(nev) < 1:
            raise ValueError(f"Number of modes must be positive, got {nev}")
        self.nev = None if nev is None else int(nev)
        self.sigma = sigma
        self.find_steady_state = find_steady_state
        self.linear = linear
        self.left = left
        self.tol = tol
        self.maxiter = maxiter
        self.filename = filename
        self.dir_name = dir_name
        self.newton_kwargs = newton_kwargs

    @staticmethod
    def _rank_limit(B):
        """Number of structurally nonzero columns of B, an upper bound on finite modes."""
        col_norm = np.asarray(abs(B).sum(axis=0)).ravel()
        return int(np.count_nonzero(col_norm))

    def _dense(self, A, B):
        alpha_beta, vecs = la.eig(A.toarray(), B.toarray(), homogeneous_eigvals=True)
        alpha, beta = alpha_beta
        finite = np.abs(beta) * INFINITE_EIGENVALUE > np.abs(alpha - self.sigma * beta)
        lam = alpha[finite] / beta[finite]
        vecs = vecs[:, finite]
        return lam, vecs / np.linalg.norm(vecs, axis=0), True

    def _sparse(self, A, B, k):
        n = A.shape[0]
        lu = StaticBase._factorize(A - self.sigma * B)
        dtype = np.result_type(A.dtype, np.asarray(self.sigma).dtype)
        op = spla.LinearOperator((n, n), matvec=lambda v: lu.solve(B @ v), dtype=dtype)
        converged = True
        try:
            mu, vecs = spla.eigs(op, k=k, which="LM", tol=self.tol, maxiter=self.maxiter)
        except spla.ArpackNoConvergence as err:
            warnings.warn(f"ARPACK did not converge: {len(err.eigenvalues)} of {k} modes found")
            mu, vecs = err.eigenvalues, err.eigenvectors
            converged = False
        finite = np.abs(mu) * INFINITE_EIGENVALUE > 1.0
        lam = self.sigma + 1.0 / mu[finite]
        return lam, vecs[:, finite], converged

    def eigen(self, assembly, prescribed_conditions, distributed_loads=None, system=None):
        """
        Steady state (optional), linearization and eigen-solution.

        Returns:
            (system, eigenvalues, right_eigenvectors, converged), plus the left
            eigenvectors before ``converged`` when ``left`` is True.
        """
        time_start = time.time()
        system = StaticBase._prepare_system(assembly, prescribed_conditions, system, dynamic=True)
        n = system.nb_states

        if self.find_steady_state:
            if self.linear:
                system, ok = StaticLinear.solve(assembly, prescribed_conditions, distributed_loads,
                                                system=system)
            else:
                system, ok = StaticNonLinear.solve(assembly, prescribed_conditions,
                                                   distributed_loads, system=system,
                                                   **self.newton_kwargs)
            if not ok:
                warnings.warn("Steady state did not converge, no modes computed")
                empty = np.zeros((n, 0), dtype=complex)
                if self.left:
                    return system, np.zeros(0, dtype=complex), empty, empty, False
                return system, np.zeros(0, dtype=complex), empty, False
        else:
            system.apply_conditions(assembly, prescribed_conditions, distributed_loads,
                                    t=system.t)

        system.xdot = np.zeros(n)
        A = system.get_K(assembly).copy()
        B = -system.get_M(assembly)
        system.eigen_matrices = (A, B)

        limit = self._rank_limit(B)
        converged = True
        dense = self.nev is None
        if self.nev is None:
            k = limit
        elif self.nev > limit:
            warnings.warn(f"Requested {self.nev} modes but at most {limit} are finite")
            k = limit
            converged = False
            dense = True
        else:
            k = self.nev

        if k == 0:
            lam, vecs = np.zeros(0, dtype=complex), np.zeros((n, 0), dtype=complex)
        elif dense or k >= n - 1:
            lam, vecs, ok = self._dense(A, B)
            converged = converged and ok
        else:
            lam, vecs, ok = self._sparse(A, B, k)
            converged = converged and ok

        order = np.argsort(np.abs(lam - self.sigma), kind="stable")
        if self.nev is not None:
            order = order[:k]
        lam, vecs = lam[order], vecs[:, order]
        if self.nev is not None and lam.size < k:
            warnings.warn(f"Only {lam.size} finite modes resolved out of {k} requested")
            converged = False

        system.eig_vals = lam.copy()
        system.eig_modes = vecs.copy()
        logger.info("Eigen-analysis: %d modes, converged=%s", lam.size, converged)

        storage = {'eigenvalues': lam, 'eigenvectors': vecs, 'x_steady': system.x.copy()}
        StaticBase._export_results(self.filename, self.dir_name, storage,
                                   {"sigma": self.sigma, "Converged": converged},
                                   time.time() - time_start)

        if self.left:
            left = derive_left_eigenvectors(system, lam, vecs)
            return system, lam, vecs, left, converged
        return system, lam, vecs, converged

    @staticmethod
    def solve_modal(assembly, prescribed_conditions, nev=None, distributed_loads=None,
                    system=None, **kwargs):
        """Create a Modal solver and run it."""
        solver = Modal(nev=nev, **kwargs)
        return solver.eigen(assembly, prescribed_conditions, distributed_loads, system)


def solve_eigen(assembly, prescribed_conditions, num_modes, system=None, distributed_loads=None,
                **kwargs):
    """
    Eigenvalues and right eigenvectors of the linearized assembly.

    Parameters
    ----------
    num_modes : int or None
        Number of modes closest to the shift; None computes all finite modes
        with a dense solver.
    **kwargs
        sigma, find_steady_state, linear, left, tol, maxiter, filename, dir_name,
        and Newton options for the steady state.

    Returns
    -------
    (System, eigenvalues, eigenvectors, converged)
    """
    return Modal.solve_modal(assembly, prescribed_conditions, nev=num_modes,
                             distributed_loads=distributed_loads, system=system, **kwargs)


def _clusters(eigenvalues):
    """Index groups of eigenvalues equal within LEFT_CLUSTER (relative)."""
    remaining = list(range(len(eigenvalues)))
    groups = []
    while remaining:
        ref = eigenvalues[remaining[0]]
        tol = LEFT_CLUSTER * max(1.0, abs(ref))
        group = [j for j in remaining if abs(eigenvalues[j] - ref) <= tol]
        groups.append(group)
        remaining = [j for j in remaining if j not in group]
    return groups


def derive_left_eigenvectors(system, eigenvalues, right_eigenvectors, assembly=None):
    """
    Left eigenvectors w (A^T w = lambda B^T w) normalized so that W^T B V = I.

    Uses shifted block inverse iteration on the transposed pencil, one block
    per group of repeated eigenvalues, then biorthonormalizes each block
    against its right eigenvectors. The matrices of the last eigen-analysis on
    ``system`` are reused unless ``assembly`` is given, in which case they are
    rebuilt at the current state.
    """
    if assembly is not None:
        system.xdot = np.zeros(system.nb_states)
        A = system.get_K(assembly).copy()
        B = -system.get_M(assembly)
    elif getattr(system, "eigen_matrices", None) is not None:
        A, B = system.eigen_matrices
    else:
        raise ValueError("No eigen-analysis on this system; pass the assembly")

    V = np.asarray(right_eigenvectors)
    lam = np.asarray(eigenvalues)
    W = np.zeros(V.shape, dtype=complex)
    AT = A.T.tocsc().astype(complex)
    BT = B.T.tocsc().astype(complex)

    for group in _clusters(lam):
        li = np.mean(lam[group])
        shift = li * (1.0 + LEFT_SHIFT) if li != 0 else LEFT_SHIFT
        try:
            lu = StaticBase._factorize(AT - shift * BT)
        except SingularSystemError:
            shift = li * (1.0 + 1e3 * LEFT_SHIFT) + 1e3 * LEFT_SHIFT
            lu = StaticBase._factorize(AT - shift * BT)

        Vc = V[:, group].astype(complex)
        # v^T conj(v) > 0: the start has a component along each left vector
        Wc, _ = np.linalg.qr(lu.solve(np.conj(Vc)))
        for _ in range(LEFT_ITERATIONS - 1):
            Wc, _ = np.linalg.qr(lu.solve(BT @ Wc))

        G = Wc.T @ (B @ Vc)
        W[:, group] = Wc @ np.linalg.inv(G).T
    return W
