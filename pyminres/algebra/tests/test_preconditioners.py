"""
Tests for the preconditioners and the preconditioner factory.
"""

import numpy as np
import pytest
import scipy.sparse as sps
import scipy.sparse.linalg as spsla

from pyminres.algebra.solver import SolverError, SolverErrorMsg
from pyminres.algebra.operators import SymmetricOperator
from pyminres.algebra.preconditioners import (
    Preconditioner, IdentityPreconditioner, JacobiPreconditioner, PreconditionersTypeSym,
    choose_precond, as_precond_apply, preconditioner_idn
)

# -----------------------------------------------------------------------------
#! Identity
# -----------------------------------------------------------------------------

def test_identity_needs_no_setup():
    p = IdentityPreconditioner()
    r = np.array([1.0, -2.0, 3.0])
    assert not p.needs_setup
    assert p.is_set
    assert np.array_equal(p(r), r)
    assert np.array_equal(p.get_apply()(r), r)
    assert p.type is PreconditionersTypeSym.IDENTITY

# -----------------------------------------------------------------------------
#! Jacobi
# -----------------------------------------------------------------------------

class TestJacobi:

    def test_magnitude_of_indefinite_diagonal(self):
        A = np.diag([2.0, -4.0, 0.5])
        p = JacobiPreconditioner().set(A)
        r = np.ones(3)
        assert np.allclose(p.solve(r), [0.5, 0.25, 2.0])
        assert np.all(p.inv_diag > 0)

    def test_zero_diagonal_entry_maps_to_one(self):
        A = np.array([[0.0, 1.0], [1.0, 3.0]])
        p = JacobiPreconditioner().set(A)
        assert np.allclose(p.inv_diag, [1.0, 1.0 / 3.0])

    def test_small_threshold(self):
        A = np.diag([1e-14, 2.0])
        p = JacobiPreconditioner(tol_small=1e-12).set(A)
        assert np.allclose(p.inv_diag, [1.0, 0.5])

    def test_shift(self):
        A = np.diag([1.0, -3.0])
        p = JacobiPreconditioner().set(A, sigma=1.0)
        assert p.sigma == 1.0
        assert np.allclose(p.inv_diag, [0.5, 0.5])

    def test_operator_and_sparse_sources(self):
        A   = np.diag([2.0, -5.0, 4.0]) + 0.1 * (np.eye(3, k=1) + np.eye(3, k=-1))
        ref = 1.0 / np.abs(np.diag(A))
        assert np.allclose(JacobiPreconditioner().set(SymmetricOperator(A)).inv_diag, ref)
        assert np.allclose(JacobiPreconditioner().set(sps.csr_matrix(A)).inv_diag, ref)

    def test_complex_hermitian_diagonal_gives_real_scaling(self):
        A = np.array([[2.0, 1j], [-1j, -4.0]], dtype=complex)
        p = JacobiPreconditioner().set(A)
        z = p.solve(np.array([1.0 + 1.0j, 2.0]))
        assert np.allclose(z, [0.5 + 0.5j, 0.5])

    def test_unset_raises(self):
        p = JacobiPreconditioner()
        assert not p.is_set
        with pytest.raises(SolverError) as exc:
            p.solve(np.ones(3))
        assert exc.value.code == SolverErrorMsg.PRECOND_INVALID
        with pytest.raises(SolverError):
            p.get_apply()

    def test_operator_without_diagonal(self):
        with pytest.raises(SolverError) as exc:
            JacobiPreconditioner().set(spsla.aslinearoperator(np.eye(3)))
        assert exc.value.code == SolverErrorMsg.PRECOND_INVALID

    def test_non_square_operator(self):
        with pytest.raises(SolverError) as exc:
            JacobiPreconditioner().set(np.ones((2, 3)))
        assert exc.value.code == SolverErrorMsg.DIM_MISMATCH

    def test_apply_dimension_mismatch(self):
        p = JacobiPreconditioner().set(np.eye(3))
        with pytest.raises(SolverError) as exc:
            p.solve(np.ones(4))
        assert exc.value.code == SolverErrorMsg.DIM_MISMATCH

# -----------------------------------------------------------------------------
#! Factory
# -----------------------------------------------------------------------------

class TestChoosePrecond:

    @pytest.mark.parametrize("precond_id, cls", [
        ('identity', IdentityPreconditioner),
        ('none', IdentityPreconditioner),
        ('jacobi', JacobiPreconditioner),
        ('diag', JacobiPreconditioner),
        (PreconditionersTypeSym.JACOBI, JacobiPreconditioner),
        (0, IdentityPreconditioner),
        (1, JacobiPreconditioner),
    ])
    def test_identifiers(self, precond_id, cls):
        assert type(choose_precond(precond_id)) is cls

    def test_none_and_instance(self):
        assert choose_precond(None) is None
        p = JacobiPreconditioner()
        assert choose_precond(p) is p
        assert choose_precond(p, backend='numpy') is p

    def test_kwargs_forwarded(self):
        p = choose_precond('jacobi', tol_small=1e-3, unrelated=1)
        p.set(np.diag([1e-4, 2.0]))
        assert np.allclose(p.inv_diag, [1.0, 0.5])

    def test_invalid_identifiers(self):
        with pytest.raises(ValueError):
            choose_precond('ilu')
        with pytest.raises(ValueError):
            choose_precond(42)
        with pytest.raises(TypeError):
            choose_precond(1.5)

# -----------------------------------------------------------------------------
#! Adapter
# -----------------------------------------------------------------------------

class TestAsPrecondApply:

    def test_none_is_identity(self):
        assert as_precond_apply(None) is preconditioner_idn

    def test_preconditioner_instance(self):
        p       = JacobiPreconditioner().set(np.diag([2.0, 4.0]))
        apply   = as_precond_apply(p)
        assert np.allclose(apply(np.ones(2)), [0.5, 0.25])

    def test_object_with_solve_and_callable(self):
        class Halve:
            def solve(self, r):
                return 0.5 * r
        r = np.ones(3)
        assert np.allclose(as_precond_apply(Halve())(r), 0.5 * r)
        f = lambda v: 2.0 * v
        assert as_precond_apply(f) is f

    def test_unsupported(self):
        with pytest.raises(SolverError) as exc:
            as_precond_apply(3.0)
        assert exc.value.code == SolverErrorMsg.PRECOND_INVALID

    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError):
            Preconditioner()
