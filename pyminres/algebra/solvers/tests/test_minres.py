"""
Unit tests for the MINRES kernel.

Covers indefinite and SPD convergence, the degenerate cases (zero right-hand
side, exhausted Krylov subspace), preconditioning and boundary checks.
"""

import numpy as np
import pytest

from pyminres.algebra.solver import SolverError, SolverErrorMsg
from pyminres.algebra.operators import SymmetricOperator
from pyminres.algebra.preconditioners import IdentityPreconditioner, JacobiPreconditioner
from pyminres.algebra.solvers.minres import (
    minres_kernel, MinresKernelOutput, MinresSolver, MinresSolverScipy, _givens_step
)

# -------------------------------------------------------------------

def _spd_matrix(n, seed=42, lo=1.0, hi=10.0):
    rng     = np.random.default_rng(seed)
    Q, _    = np.linalg.qr(rng.standard_normal((n, n)))
    return Q @ np.diag(np.linspace(lo, hi, n)) @ Q.T

def _indefinite_matrix(n, seed=7):
    rng     = np.random.default_rng(seed)
    Q, _    = np.linalg.qr(rng.standard_normal((n, n)))
    eigs    = np.concatenate([np.linspace(-6.0, -1.0, n // 2), np.linspace(1.0, 4.0, n - n // 2)])
    A       = Q @ np.diag(eigs) @ Q.T
    return 0.5 * (A + A.T)

# -------------------------------------------------------------------
#! Scenario
# -------------------------------------------------------------------

def test_diagonal_indefinite_scenario():
    """A = diag(2, -3, 5), b = (2, -3, 5): three distinct eigenvalues, solution ones."""
    A   = np.diag([2.0, -3.0, 5.0])
    b   = np.array([2.0, -3.0, 5.0])
    x   = np.zeros(3)

    out = minres_kernel(A, b, x, maxiter=10, tol=1e-10)

    assert isinstance(out, MinresKernelOutput)
    assert np.allclose(x, np.ones(3), atol=1e-8)
    assert out.iterations <= 3
    assert out.error < 1e-10
    assert not out.breakdown

def test_indefinite_dense_system():
    n       = 40
    A       = _indefinite_matrix(n)
    x_true  = np.random.default_rng(3).standard_normal(n)
    b       = A @ x_true
    x       = np.zeros(n)

    out     = minres_kernel(A, b, x, maxiter=10 * n, tol=1e-9)

    assert out.error < 1e-9
    assert np.linalg.norm(A @ x - b) / np.linalg.norm(b) < 1e-9
    assert np.allclose(x, x_true, atol=1e-6)

# -------------------------------------------------------------------
#! SPD
# -------------------------------------------------------------------

def test_spd_converges_within_n():
    n       = 30
    A       = _spd_matrix(n)
    b       = np.random.default_rng(1).standard_normal(n)
    x       = np.zeros(n)

    out     = minres_kernel(A, b, x, maxiter=n, tol=1e-8)

    assert out.error < 1e-8
    assert out.iterations <= n
    assert np.isclose(out.residual_norm, np.linalg.norm(A @ x - b))

def test_spd_recomputed_residual_non_increasing():
    n       = 30
    A       = _spd_matrix(n, seed=11)
    b       = np.random.default_rng(2).standard_normal(n)

    errors  = []
    for k in range(0, 16):
        x   = np.zeros(n)
        out = minres_kernel(A, b, x, maxiter=k, tol=0.0)
        assert out.iterations == k
        errors.append(out.error)

    for prev, cur in zip(errors[:-1], errors[1:]):
        assert cur <= prev * (1.0 + 1e-10) + 1e-14

def test_residual_estimate_tracks_true_residual_unpreconditioned():
    n       = 20
    A       = _spd_matrix(n, seed=5)
    b       = np.random.default_rng(5).standard_normal(n)
    x       = np.zeros(n)
    out     = minres_kernel(A, b, x, maxiter=8, tol=0.0)
    # without preconditioning and from x0 = 0 the estimate is the relative residual
    assert np.isclose(out.residual_estimate, out.error, rtol=1e-6)

# -------------------------------------------------------------------
#! Degenerate cases
# -------------------------------------------------------------------

def test_zero_rhs_returns_zero_solution():
    A   = _spd_matrix(6)
    b   = np.zeros(6)
    x   = np.ones(6)

    out = minres_kernel(A, b, x, maxiter=10, tol=1e-12)

    assert out.iterations == 0
    assert out.error == 0.0
    assert np.array_equal(x, np.zeros(6))
    assert not out.breakdown

def test_exact_initial_guess_stops_immediately():
    A   = np.diag([2.0, -3.0, 5.0])
    b   = np.array([2.0, -3.0, 5.0])
    x   = np.ones(3)

    out = minres_kernel(A, b, x, maxiter=10, tol=1e-12)

    assert out.iterations == 0
    assert out.error == 0.0
    assert np.array_equal(x, np.ones(3))

def test_exhausted_krylov_subspace_at_exact_solution():
    """A = 2 I, b = 2 e_1: the subspace is exhausted after one step, at the exact solution."""
    A   = 2.0 * np.eye(5)
    b   = np.array([2.0, 0.0, 0.0, 0.0, 0.0])
    x   = np.zeros(5)

    # with tol = 0 the strict test never passes, so the run ends on the exhausted subspace
    out = minres_kernel(A, b, x, maxiter=10, tol=0.0)

    assert out.iterations == 1
    assert out.error == 0.0
    assert out.breakdown is False
    assert np.array_equal(x, np.array([1.0, 0.0, 0.0, 0.0, 0.0]))

def test_zero_operator_stops_on_zero_pivot():
    x   = np.zeros(3)
    out = minres_kernel(np.zeros((3, 3)), np.ones(3), x, maxiter=5, tol=1e-8)

    assert out.iterations == 0
    assert out.breakdown is True
    assert out.error == 1.0
    assert np.array_equal(x, np.zeros(3))

def test_singular_preconditioner_annihilating_residual_is_breakdown():
    """M^{-1} = 0 gives a zero preconditioned residual while A x0 - b is not zero."""
    A   = np.diag([2.0, -3.0, 5.0])
    b   = np.array([2.0, -3.0, 5.0])
    x   = np.zeros(3)

    out = minres_kernel(A, b, x, lambda r: np.zeros_like(r), maxiter=10, tol=1e-10)

    assert out.iterations == 0
    assert out.error == 1.0
    assert out.breakdown is True
    assert np.array_equal(x, np.zeros(3))

def test_zero_iteration_budget_reports_initial_error():
    A   = _spd_matrix(8)
    b   = np.random.default_rng(0).standard_normal(8)
    x0  = np.random.default_rng(1).standard_normal(8)
    x   = x0.copy()

    out = minres_kernel(A, b, x, maxiter=0, tol=1e-12)

    assert out.iterations == 0
    assert np.array_equal(x, x0)
    assert np.isclose(out.error, np.linalg.norm(A @ x0 - b) / np.linalg.norm(b))

@pytest.mark.parametrize("k", [1, 2, 5])
def test_iteration_budget_respected(k):
    n   = 25
    A   = _indefinite_matrix(n)
    b   = np.ones(n)
    x   = np.zeros(n)
    out = minres_kernel(A, b, x, maxiter=k, tol=1e-14)
    assert out.iterations <= k

# -------------------------------------------------------------------
#! Preconditioning
# -------------------------------------------------------------------

def test_identity_preconditioner_reproduces_unpreconditioned_run():
    n       = 20
    A       = _indefinite_matrix(n)
    b       = np.random.default_rng(9).standard_normal(n)

    x_none  = np.zeros(n)
    x_idn   = np.zeros(n)
    x_fun   = np.zeros(n)
    out_none= minres_kernel(A, b, x_none, None, maxiter=12, tol=0.0)
    out_idn = minres_kernel(A, b, x_idn, IdentityPreconditioner(), maxiter=12, tol=0.0)
    out_fun = minres_kernel(A, b, x_fun, lambda r: r, maxiter=12, tol=0.0)

    assert np.array_equal(x_none, x_idn)
    assert np.array_equal(x_none, x_fun)
    assert out_none.iterations == out_idn.iterations == out_fun.iterations
    assert out_none.error == out_idn.error

def test_exact_preconditioner_converges_in_one_iteration():
    n       = 20
    A       = _spd_matrix(n, seed=21)
    b       = np.random.default_rng(21).standard_normal(n)
    x       = np.zeros(n)

    out     = minres_kernel(A, b, x, lambda r: np.linalg.solve(A, r), maxiter=1, tol=1e-10)

    assert out.error < 1e-10
    assert out.iterations <= 1
    assert np.allclose(A @ x, b, atol=1e-8)

def test_jacobi_preconditioner_on_badly_scaled_system():
    n       = 30
    d       = np.logspace(0, 4, n) * np.where(np.arange(n) % 2 == 0, 1.0, -1.0)
    A       = np.diag(d) + 0.1 * (np.eye(n, k=1) + np.eye(n, k=-1))
    b       = np.ones(n)

    precond = JacobiPreconditioner().set(SymmetricOperator(A))
    x       = np.zeros(n)
    out     = minres_kernel(A, b, x, precond, maxiter=4 * n, tol=1e-10)

    assert out.error < 1e-10
    assert np.allclose(A @ x, b, atol=1e-8)

def test_preconditioner_object_with_solve():
    class Diagonal:
        def __init__(self, d):
            self.d = d
        def solve(self, r):
            return r / self.d

    A   = _spd_matrix(12)
    b   = np.ones(12)
    x   = np.zeros(12)
    out = minres_kernel(A, b, x, Diagonal(np.abs(np.diag(A))), maxiter=50, tol=1e-10)
    assert out.error < 1e-10

def test_indefinite_preconditioner_raises():
    A   = _spd_matrix(5)
    b   = np.ones(5)
    with pytest.raises(SolverError) as exc:
        minres_kernel(A, b, np.zeros(5), lambda r: -r, maxiter=5, tol=1e-8)
    assert exc.value.code == SolverErrorMsg.PRECOND_INVALID

# -------------------------------------------------------------------
#! Complex
# -------------------------------------------------------------------

def test_complex_hermitian_indefinite():
    n       = 24
    rng     = np.random.default_rng(17)
    Q, _    = np.linalg.qr(rng.standard_normal((n, n)) + 1j * rng.standard_normal((n, n)))
    eigs    = np.concatenate([np.linspace(-5.0, -1.0, n // 2), np.linspace(1.0, 5.0, n - n // 2)])
    A       = Q @ np.diag(eigs) @ Q.conj().T
    A       = 0.5 * (A + A.conj().T)
    x_true  = rng.standard_normal(n) + 1j * rng.standard_normal(n)
    b       = A @ x_true
    x       = np.zeros(n, dtype=np.complex128)

    out     = minres_kernel(A, b, x, maxiter=10 * n, tol=1e-9)

    assert out.error < 1e-9
    assert np.allclose(x, x_true, atol=1e-6)

def test_complex_system_needs_complex_solution():
    A   = np.array([[2.0, 1j], [-1j, 3.0]])
    b   = np.array([1.0, 1.0])
    with pytest.raises(SolverError) as exc:
        minres_kernel(A, b, np.zeros(2), maxiter=5, tol=1e-8)
    assert exc.value.code == SolverErrorMsg.INVALID_INPUT

# -------------------------------------------------------------------
#! Boundary checks
# -------------------------------------------------------------------

def test_dimension_mismatch():
    A = np.eye(4)
    with pytest.raises(SolverError) as exc:
        minres_kernel(A, np.ones(3), np.zeros(3), maxiter=3, tol=1e-8)
    assert exc.value.code == SolverErrorMsg.DIM_MISMATCH

    with pytest.raises(SolverError) as exc:
        minres_kernel(A, np.ones(4), np.zeros(3), maxiter=3, tol=1e-8)
    assert exc.value.code == SolverErrorMsg.DIM_MISMATCH

def test_callable_returning_wrong_size_is_rejected():
    with pytest.raises(SolverError) as exc:
        minres_kernel(lambda v: v[:-1], np.ones(4), np.zeros(4), maxiter=3, tol=1e-8)
    assert exc.value.code == SolverErrorMsg.DIM_MISMATCH

@pytest.mark.parametrize("maxiter, tol", [(-1, 1e-8), (5, -1e-3)])
def test_negative_parameters_rejected(maxiter, tol):
    with pytest.raises(SolverError) as exc:
        minres_kernel(np.eye(3), np.ones(3), np.zeros(3), maxiter=maxiter, tol=tol)
    assert exc.value.code == SolverErrorMsg.INVALID_INPUT

def test_integer_solution_vector_rejected():
    with pytest.raises(SolverError) as exc:
        minres_kernel(np.eye(3), np.ones(3), np.zeros(3, dtype=int), maxiter=3, tol=1e-8)
    assert exc.value.code == SolverErrorMsg.INVALID_INPUT

def test_operator_errors_propagate():
    def broken(v):
        raise RuntimeError("operator failed")
    with pytest.raises(RuntimeError, match="operator failed"):
        minres_kernel(broken, np.ones(3), np.zeros(3), maxiter=3, tol=1e-8)

def test_defaults_use_problem_size_and_machine_epsilon():
    A   = np.diag([1.0, 2.0, 3.0, 4.0])
    b   = np.ones(4)
    x   = np.zeros(4)
    out = minres_kernel(A, b, x)
    assert out.iterations <= 4
    assert np.allclose(A @ x, b, atol=1e-12)

# -------------------------------------------------------------------
#! Rotation step
# -------------------------------------------------------------------

def test_givens_step_produces_unit_rotation():
    r1, r2, r3, c, s = _givens_step(1.5, 0.7, 0.3, 0.8, 0.6, 0.6, -0.8)
    assert np.isclose(c * c + s * s, 1.0)
    assert np.isclose(r1, np.hypot(0.8 * 1.5 - 0.6 * 0.6 * 0.7, 0.3))
    assert np.isclose(r2, 0.6 * 1.5 + 0.8 * 0.6 * 0.7)
    assert np.isclose(r3, -0.8 * 0.7)

def test_givens_step_zero_pivot_keeps_rotation():
    r1, _, _, c, s = _givens_step(0.0, 0.0, 0.0, 1.0, 1.0, 0.0, 0.0)
    assert r1 == 0.0
    assert (c, s) == (1.0, 0.0)

# -------------------------------------------------------------------
#! Static entry points
# -------------------------------------------------------------------

def test_solve_system_does_not_modify_guess():
    A   = _spd_matrix(10)
    b   = np.ones(10)
    x0  = np.zeros(10)
    res = MinresSolver.solve_system(lambda v: A @ v, b, x0, tol=1e-10, maxiter=50)
    assert np.array_equal(x0, np.zeros(10))
    assert res.converged
    assert res.relative_error < 1e-10

def test_solve_system_promotes_integer_guess():
    A   = np.diag([2.0, -3.0, 5.0])
    b   = np.array([2.0, -3.0, 5.0])
    res = MinresSolver.solve_system(lambda v: A @ v, b, np.zeros(3, dtype=int), tol=1e-10, maxiter=10)
    assert np.allclose(res.x, np.ones(3))

def test_scipy_cross_check():
    n       = 40
    A       = _indefinite_matrix(n, seed=8)
    b       = np.random.default_rng(8).standard_normal(n)
    x0      = np.zeros(n)
    matvec  = lambda v: A @ v

    native  = MinresSolver.solve_system(matvec, b, x0, tol=1e-10, maxiter=10 * n)
    ref     = MinresSolverScipy.solve_system(matvec, b, x0, tol=1e-10, maxiter=10 * n)
    x_true  = np.linalg.solve(A, b)

    assert np.allclose(native.x, x_true, atol=1e-7)
    assert np.allclose(ref.x, x_true, atol=1e-6)
    assert np.allclose(native.x, ref.x, atol=1e-6)

# -------------------------------------------------------------------
#! EOF
# -------------------------------------------------------------------
