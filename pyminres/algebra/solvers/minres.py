'''
file        : pyminres/algebra/solvers/minres.py

Implements the Minimum Residual (MINRES) iterative algorithm for solving linear systems
Ax = b where A is symmetric (Hermitian), but not necessarily positive definite.

MINRES combines a preconditioned Lanczos process with Givens rotations that
continuously update the QR factorization of the tridiagonal Lanczos matrix. The
iterate minimizes the residual over the growing Krylov subspace.

Mathematical Background:
-----------------------
Given a symmetric A, right-hand side b, initial guess x0 and an SPD preconditioner M:

1. Lanczos (M^{-1}-inner product): from v_1 = r_0 / beta_1, w_1 = M^{-1} v_1,
       beta_{k+1} v_{k+1} = A w_k - alpha_k v_k - beta_k v_{k-1},
       alpha_k = <A w_k - beta_k v_{k-1}, w_k>,
       beta_{k+1} = sqrt(<v_{k+1}, M^{-1} v_{k+1}>).
2. The tridiagonal T_k is reduced to upper-triangular form with the two most
   recent Givens rotations (c, s), (c_old, s_old). Only a sliding window of
   three search directions p is kept.
3. x_k = x_{k-1} + beta_1 c_k eta_k p_k, eta_{k+1} = -s_k eta_k.

Termination is decided on the recomputed residual ||A x - b||^2 < tol^2 ||b||^2.
The cheap rotation-based estimate norm_rMR is tracked alongside for inspection.

References:
-----------
- Paige, C. C., & Saunders, M. A. (1975). Solution of Sparse Indefinite Systems of Linear Equations.
  SIAM Journal on Numerical Analysis, 12(4), 617-629.
- Greenbaum, A. (1997). Iterative Methods for Solving Linear Systems. SIAM.
- Saad, Y. (2003). Iterative Methods for Sparse Linear Systems (2nd ed.). SIAM. Algorithm 6.14.
'''

import numpy as np
import numba
from typing import Optional, Callable, Any, NamedTuple

import scipy.sparse.linalg as spsla

from ..solver import (
    SolverType, Solver, SolverError, SolverErrorMsg,
    Array, MatVecFunc, PrecondApplyFunc, StaticSolverFunc, SolverResult
)
from ..utils import JAX_AVAILABLE, is_jax_array, is_jax_module, machine_epsilon, real_dtype, working_dtype
from ..preconditioners import preconditioner_idn, as_precond_apply
from ..operators import as_matvec

# -----------------------------------------------------------------------------
#! Kernel output
# -----------------------------------------------------------------------------

class MinresKernelOutput(NamedTuple):
    '''
    Outcome of `minres_kernel` (the solution is written into x).

    Attributes:
        iterations (int):
            Completed iterations. The iteration that meets the tolerance is
            not counted.
        error (float):
            Achieved relative residual sqrt(||A x - b||^2 / ||b||^2).
        residual_estimate (float):
            Rotation-based residual estimate norm_rMR / norm_r0.
        residual_norm (float):
            ||A x - b||.
        breakdown (bool):
            The recurrence stopped on a zero pivot before reaching the tolerance.
    '''
    iterations          : int
    error               : float
    residual_estimate   : float
    residual_norm       : float
    breakdown           : bool

# -----------------------------------------------------------------------------
#! Helpers
# -----------------------------------------------------------------------------

@numba.njit(cache=True, error_model='numpy')
def _givens_step(alpha, beta, beta_new, c, c_old, s, s_old):
    '''
    One column of the incremental QR factorization of the Lanczos matrix.

    Applies the two stored rotations to the new column (beta, alpha, beta_new)
    and builds the next rotation.

    Returns:
        (r1, r2, r3, c_new, s_new); for r1 == 0 the rotation is undefined and
        (c, s) are returned unchanged.
    '''
    r2      = s * alpha + c * c_old * beta
    r3      = s_old * beta
    r1_hat  = c * alpha - c_old * s * beta
    r1      = np.sqrt(r1_hat * r1_hat + beta_new * beta_new)
    if r1 == 0.0:
        return r1, r2, r3, c, s
    return r1, r2, r3, r1_hat / r1, beta_new / r1

def _sqnorm(v: np.ndarray) -> float:
    return float(np.vdot(v, v).real)

def _lanczos_norm(v: np.ndarray, w: np.ndarray, eps: float) -> float:
    '''
    sqrt(<v, M^{-1} v>) with w = M^{-1} v. A clearly negative value means the
    preconditioner is not positive definite; round-off negatives clip to 0.
    '''
    beta2 = float(np.vdot(v, w).real)
    if beta2 < 0.0:
        if -beta2 > np.sqrt(eps) * np.sqrt(_sqnorm(v) * _sqnorm(w)):
            raise SolverError(SolverErrorMsg.PRECOND_INVALID,
                f"Preconditioner is not positive definite: <v, M^-1 v> = {beta2:.3e}.")
        return 0.0
    return float(np.sqrt(beta2))

def _check_inputs(b: Array, x: Array, tol: float, maxiter: int):
    if tol is None or tol < 0:
        raise SolverError(SolverErrorMsg.INVALID_INPUT, f"tolerance must be non-negative, got {tol}.")
    if maxiter is None or int(maxiter) != maxiter or maxiter < 0:
        raise SolverError(SolverErrorMsg.INVALID_INPUT, f"maxiter must be a non-negative integer, got {maxiter}.")
    if b.ndim != 1:
        raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Right-hand side must be a vector, got shape {b.shape}.")
    if x.shape != b.shape:
        raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Shape mismatch: b={b.shape}, x={x.shape}")

# -----------------------------------------------------------------------------
#! MINRES logic (NumPy)
# -----------------------------------------------------------------------------

def _minres_logic_numpy(matvec          : MatVecFunc,
                        b               : np.ndarray,
                        x               : np.ndarray,
                        tol             : float,
                        maxiter         : int,
                        precond_apply   : Optional[PrecondApplyFunc] = None
                        ) -> SolverResult:
    """
    Core MINRES recurrence on NumPy arrays. `x` holds the initial guess and is
    overwritten with the solution.

    Parameters:
    ------------
        matvec:
            Function computing A @ v.
        b:
            Right-hand side vector.
        x:
            Initial guess, updated in place. Must be a floating (complex if A or b is) array.
        tol:
            Relative tolerance on ||A x - b|| / ||b||.
        maxiter:
            Maximum number of iterations.
        precond_apply:
            r -> M^{-1} r for an SPD preconditioner M (identity if None).

    Returns:
        SolverResult (result.x is x).
    """
    precond     = precond_apply if precond_apply is not None else preconditioner_idn
    eps         = machine_epsilon(x.dtype)
    rhs_norm2   = _sqnorm(b)

    if rhs_norm2 == 0.0:
        x[...] = 0
        return SolverResult(x=x, converged=True, iterations=0, residual_norm=0.0,
                            relative_error=0.0, residual_estimate=0.0, breakdown=False)

    threshold2      = tol * tol * rhs_norm2

    ax              = matvec(x)
    if np.shape(ax) != b.shape:
        raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Operator returned shape {np.shape(ax)} for a vector of shape {b.shape}.")
    v_new           = b - ax
    if np.iscomplexobj(v_new) and not np.iscomplexobj(x):
        raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Complex system needs a complex solution vector, got {x.dtype}.")

    residual_norm2  = _sqnorm(v_new)
    w_new           = precond(v_new)
    beta_new        = _lanczos_norm(v_new, w_new, eps)
    norm_r0         = beta_new
    norm_rMR        = beta_new
    n               = 0
    breakdown       = False

    # zero preconditioned residual: a breakdown unless x0 already meets the tolerance
    if beta_new == 0.0:
        return _finish_numpy(x, n, residual_norm2, rhs_norm2, tol, norm_rMR, norm_r0, True)

    v_new           = v_new / beta_new
    w_new           = w_new / beta_new
    v               = np.zeros_like(v_new)
    p               = np.zeros_like(v_new)
    p_old           = np.zeros_like(v_new)
    c, c_old        = 1.0, 1.0
    s, s_old        = 0.0, 0.0
    eta             = 1.0

    while n < maxiter:
        # preconditioned Lanczos step
        beta        = beta_new
        v_old       = v
        v           = v_new
        w           = w_new
        v_new       = matvec(w) - beta * v_old
        alpha       = float(np.vdot(w, v_new).real)
        v_new       = v_new - alpha * v
        w_new       = precond(v_new)
        beta_new    = _lanczos_norm(v_new, w_new, eps)

        # Krylov subspace exhausted: nothing left to normalize
        exhausted   = beta_new <= eps * (abs(alpha) + beta)
        if not exhausted:
            v_new   = v_new / beta_new
            w_new   = w_new / beta_new

        # QR update with the two stored rotations
        r1, r2, r3, c_new, s_new = _givens_step(alpha, beta, beta_new, c, c_old, s, s_old)
        if r1 == 0.0:
            breakdown = True
            break
        c_old, s_old    = c, s
        c, s            = float(c_new), float(s_new)

        # search directions
        p_oold      = p_old
        p_old       = p
        p           = (w - r2 * p_old - r3 * p_oold) / r1

        x          += (norm_r0 * c * eta) * p
        norm_rMR   *= abs(s)

        residual_norm2 = _sqnorm(matvec(x) - b)
        if residual_norm2 < threshold2:
            break

        eta         = -s * eta
        n          += 1
        if exhausted:
            breakdown = True
            break

    return _finish_numpy(x, n, residual_norm2, rhs_norm2, tol, norm_rMR, norm_r0, breakdown)

def _finish_numpy(x, n, residual_norm2, rhs_norm2, tol, norm_rMR, norm_r0, breakdown) -> SolverResult:
    error = float(np.sqrt(residual_norm2 / rhs_norm2))
    return SolverResult(
        x                   = x,
        converged           = error <= tol,
        iterations          = n,
        residual_norm       = float(np.sqrt(residual_norm2)),
        relative_error      = error,
        residual_estimate   = float(norm_rMR / norm_r0) if norm_r0 > 0 else 0.0,
        breakdown           = breakdown and error > tol
    )

# -----------------------------------------------------------------------------
#! MINRES logic (JAX)
# -----------------------------------------------------------------------------

if JAX_AVAILABLE:
    import jax.numpy as jnp
    from jax import lax

    def _minres_logic_jax(matvec          : MatVecFunc,
                          b               : Array,
                          x0              : Array,
                          tol             : float,
                          maxiter         : int,
                          precond_apply   : Optional[PrecondApplyFunc] = None
                          ) -> SolverResult:
        """
        MINRES recurrence as a `jax.lax.while_loop`, same sequence as the NumPy
        kernel. The solution is returned (JAX arrays are immutable).

        Degenerate cases are folded into the state: a zero pivot or a preconditioner
        that is not positive definite stops the loop with `breakdown=True`
        instead of raising, so the function can be traced by `jax.jit`.
        """
        precond     = precond_apply if precond_apply is not None else preconditioner_idn
        dtype       = jnp.result_type(b, x0)
        rdtype      = real_dtype(dtype)
        eps         = machine_epsilon(dtype)
        b           = b.astype(dtype)
        x0          = x0.astype(dtype)

        def sqnorm(v):
            return jnp.real(jnp.vdot(v, v)).astype(rdtype)

        def lanczos_norm(v, w):
            beta2       = jnp.real(jnp.vdot(v, w)).astype(rdtype)
            indefinite  = -beta2 > jnp.sqrt(eps) * jnp.sqrt(sqnorm(v) * sqnorm(w))
            return jnp.sqrt(jnp.maximum(beta2, 0.0)), indefinite

        rhs_norm2       = sqnorm(b)
        rhs_zero        = rhs_norm2 == 0
        threshold2      = tol * tol * rhs_norm2

        ax              = matvec(x0)
        if jnp.shape(ax) != b.shape:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Operator returned shape {jnp.shape(ax)} for a vector of shape {b.shape}.")
        v_new           = b - ax
        v_new           = v_new.astype(dtype)
        res2_0          = sqnorm(v_new)
        w_new           = precond(v_new).astype(dtype)
        beta_one, indef = lanczos_norm(v_new, w_new)
        scale           = jnp.where(beta_one == 0, 1.0, beta_one)
        zeros           = jnp.zeros_like(v_new)

        state = {
            'n'             : jnp.asarray(0, dtype=jnp.int32),
            'x'             : x0,
            'v'             : zeros,
            'v_new'         : v_new / scale,
            'w_new'         : w_new / scale,
            'p'             : zeros,
            'p_old'         : zeros,
            'beta_new'      : beta_one,
            'c'             : jnp.asarray(1.0, dtype=rdtype),
            'c_old'         : jnp.asarray(1.0, dtype=rdtype),
            's'             : jnp.asarray(0.0, dtype=rdtype),
            's_old'         : jnp.asarray(0.0, dtype=rdtype),
            'eta'           : jnp.asarray(1.0, dtype=rdtype),
            'norm_rMR'      : beta_one,
            'res2'          : res2_0,
            'converged'     : jnp.asarray(False),
            'breakdown'     : indef | ((beta_one == 0) & ~rhs_zero),
            'active'        : (~rhs_zero) & (beta_one > 0) & (~indef),
        }

        def cond_fun(st):
            return st['active'] & (st['n'] < maxiter) & (~st['converged']) & (~st['breakdown'])

        def body_fun(st):
            beta        = st['beta_new']
            v_old       = st['v']
            v           = st['v_new']
            w           = st['w_new']
            v_new       = (matvec(w) - beta * v_old).astype(dtype)
            alpha       = jnp.real(jnp.vdot(w, v_new)).astype(rdtype)
            v_new       = v_new - alpha * v
            w_new       = precond(v_new).astype(dtype)
            beta_new, indefinite = lanczos_norm(v_new, w_new)

            exhausted   = beta_new <= eps * (jnp.abs(alpha) + beta)
            nscale      = jnp.where(exhausted, 1.0, beta_new)
            v_new       = v_new / nscale
            w_new       = w_new / nscale

            c, c_old    = st['c'], st['c_old']
            s, s_old    = st['s'], st['s_old']
            r2          = s * alpha + c * c_old * beta
            r3          = s_old * beta
            r1_hat      = c * alpha - c_old * s * beta
            r1          = jnp.sqrt(r1_hat * r1_hat + beta_new * beta_new)
            r1_zero     = r1 == 0
            r1_safe     = jnp.where(r1_zero, 1.0, r1)
            c_new       = jnp.where(r1_zero, c, r1_hat / r1_safe)
            s_new       = jnp.where(r1_zero, s, beta_new / r1_safe)

            p_new       = (w - r2 * st['p'] - r3 * st['p_old']) / r1_safe
            x_new       = jnp.where(r1_zero, st['x'], st['x'] + (beta_one * c_new * st['eta']) * p_new)

            res2        = sqnorm(matvec(x_new) - b)
            converged   = (~r1_zero) & (res2 < threshold2)
            step        = (~converged) & (~r1_zero)

            return {
                'n'             : st['n'] + step.astype(jnp.int32),
                'x'             : x_new,
                'v'             : v,
                'v_new'         : v_new,
                'w_new'         : w_new,
                'p'             : p_new,
                'p_old'         : st['p'],
                'beta_new'      : beta_new,
                'c'             : c_new,
                'c_old'         : c,
                's'             : s_new,
                's_old'         : s,
                'eta'           : jnp.where(step, -s_new * st['eta'], st['eta']),
                'norm_rMR'      : st['norm_rMR'] * jnp.where(r1_zero, 1.0, jnp.abs(s_new)),
                'res2'          : res2,
                'converged'     : converged,
                'breakdown'     : r1_zero | indefinite | (exhausted & ~converged),
                'active'        : st['active'],
            }

        final       = lax.while_loop(cond_fun, body_fun, state)

        rhs_safe    = jnp.where(rhs_zero, 1.0, rhs_norm2)
        x           = jnp.where(rhs_zero, jnp.zeros_like(x0), final['x'])
        res2        = jnp.where(rhs_zero, 0.0, final['res2'])
        error       = jnp.sqrt(res2 / rhs_safe)
        converged   = error <= tol
        estimate    = jnp.where(beta_one > 0, final['norm_rMR'] / scale, 0.0)

        return SolverResult(
            x                   = x,
            converged           = converged,
            iterations          = final['n'],
            residual_norm       = jnp.sqrt(res2),
            relative_error      = error,
            residual_estimate   = estimate,
            breakdown           = final['breakdown'] & ~converged
        )

else:
    _minres_logic_jax = None

# -----------------------------------------------------------------------------
#! Kernel entry point
# -----------------------------------------------------------------------------

def minres_kernel(matvec        : Any,
                  b             : np.ndarray,
                  x             : np.ndarray,
                  precond_apply : Any   = None,
                  maxiter       : Optional[int]   = None,
                  tol           : Optional[float] = None) -> MinresKernelOutput:
    '''
    Run MINRES on A x = b, updating `x` in place.

    For b = 0 the exact solution is returned: `x` is overwritten with zeros
    (the initial guess is discarded), with 0 iterations and error 0.
    A zero initial preconditioned residual stops the run at once; it is
    reported as a breakdown unless x0 already meets the tolerance.

    Args:
        matvec:
            The operator: callable v -> A v, SymmetricOperator, LinearOperator,
            or an explicit matrix (its lower triangle is read).
        b (np.ndarray):
            Right-hand side of length N.
        x (np.ndarray):
            Initial guess of length N, overwritten with the solution.
        precond_apply:
            Preconditioner: None (identity), Preconditioner, object exposing
            `solve`, or callable r -> M^{-1} r.
        maxiter (int, optional):
            Iteration budget (default N).
        tol (float, optional):
            Relative tolerance (default machine epsilon of x's dtype).

    Returns:
        MinresKernelOutput

    Example:
        >>> x   = np.zeros(3)
        >>> out = minres_kernel(np.diag([2., -3., 5.]), np.array([2., -3., 5.]), x, maxiter=10, tol=1e-10)
        >>> x, out.iterations
        (array([1., 1., 1.]), 2)
    '''
    if is_jax_array(b) or is_jax_array(x):
        raise SolverError(SolverErrorMsg.BACKEND_MISMATCH,
            "minres_kernel updates x in place and needs NumPy arrays; use MinresSolver.solve_system for JAX.")
    if not isinstance(x, np.ndarray):
        raise SolverError(SolverErrorMsg.INVALID_INPUT, f"x must be a numpy array, got {type(x)}.")
    if not (np.issubdtype(x.dtype, np.floating) or np.issubdtype(x.dtype, np.complexfloating)):
        raise SolverError(SolverErrorMsg.INVALID_INPUT, f"x must have a floating dtype to be updated in place, got {x.dtype}.")

    b       = np.asarray(b)
    maxiter = b.shape[0] if maxiter is None else maxiter
    tol     = machine_epsilon(x.dtype) if tol is None else tol
    _check_inputs(b, x, tol, maxiter)

    op_shape = getattr(matvec, 'shape', None)
    if op_shape is not None and tuple(op_shape) != (b.shape[0], b.shape[0]):
        raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Operator of shape {tuple(op_shape)} does not match vectors of length {b.shape[0]}.")

    res = _minres_logic_numpy(as_matvec(matvec), b, x, tol, int(maxiter), as_precond_apply(precond_apply))
    return MinresKernelOutput(
        iterations          = res.iterations,
        error               = res.relative_error,
        residual_estimate   = res.residual_estimate,
        residual_norm       = res.residual_norm,
        breakdown           = res.breakdown
    )

# -----------------------------------------------------------------------------
#! Native MINRES Solver Class
# -----------------------------------------------------------------------------

class MinresSolver(Solver):
    '''
    Minimum Residual (MINRES) solver for symmetric (Hermitian), possibly
    indefinite systems.

    Example:
        >>> solver = MinresSolver(a, precond='jacobi', eps=1e-10)
        >>> x      = solver.solve(b)
        >>> solver.info, solver.iterations, solver.error
    '''
    _solver_type    = SolverType.MINRES
    _name           = "MINRES"

    @staticmethod
    def get_solver_func(backend_module: Any) -> StaticSolverFunc:
        """
        Return the MINRES kernel for the backend, with signature
        (matvec, b, x0, tol, maxiter, precond_apply) -> SolverResult.
        """
        if is_jax_module(backend_module):
            if _minres_logic_jax is None:
                raise SolverError(SolverErrorMsg.METHOD_NOT_IMPL, "JAX MINRES kernel is not available.")
            return _minres_logic_jax
        return _minres_logic_numpy

    @staticmethod
    def solve_system(
            matvec          : MatVecFunc,
            b               : Array,
            x0              : Array,
            *,
            tol             : float,
            maxiter         : int,
            precond_apply   : Optional[PrecondApplyFunc]    = None,
            backend_module  : Any                           = np,
            **kwargs        : Any) -> SolverResult:
        """
        Static MINRES solve. x0 is not modified.

        Parameters:
        -----------
            matvec: Matrix-vector product function A @ v
            b: Right-hand side vector
            x0: Initial guess
            tol: Relative tolerance on ||Ax - b|| / ||b||
            maxiter: Maximum iterations
            precond_apply: Optional preconditioner r -> M^{-1} r
            backend_module: np or jnp

        Returns:
        --------
            SolverResult
        """
        b   = backend_module.asarray(b)
        x0  = backend_module.asarray(x0)
        _check_inputs(b, x0, tol, maxiter)

        solver_func = MinresSolver.get_solver_func(backend_module)
        if is_jax_module(backend_module):
            return solver_func(matvec, b, x0, tol, int(maxiter), precond_apply)

        x = np.array(x0, dtype=working_dtype(b, x0), copy=True)
        return solver_func(matvec, b, x, tol, int(maxiter), precond_apply)

# -----------------------------------------------------------------------------
#! MINRES Solver Class using SciPy
# -----------------------------------------------------------------------------

class MinresSolverScipy(Solver):
    """
    Wrapper for scipy.sparse.linalg.minres with the same interface, used to
    cross-check the native solver. NumPy backend only.
    """
    _solver_type    = SolverType.SCIPY_MINRES
    _name           = "SciPy MINRES"

    @staticmethod
    def get_solver_func(backend_module: Any) -> StaticSolverFunc:
        """
        Return a callable running scipy.sparse.linalg.minres.
        """
        if is_jax_module(backend_module):
            raise SolverError(SolverErrorMsg.METHOD_NOT_IMPL, "SciPy MINRES is not available for the JAX backend.")

        def solver_func(matvec, b, x0, tol, maxiter, precond_apply):
            n   = b.shape[0]
            Aop = spsla.LinearOperator((n, n), matvec=matvec, dtype=b.dtype)
            Mop = None
            if precond_apply is not None:
                Mop = spsla.LinearOperator((n, n), matvec=precond_apply, dtype=b.dtype)
            rhs = float(np.linalg.norm(b))
            if rhs == 0.0:
                return SolverResult(x=np.zeros_like(x0), converged=True, iterations=0, residual_norm=0.0,
                                    relative_error=0.0, residual_estimate=None, breakdown=False)

            # iteration count via callback
            it = {'k': 0}
            def _cb(_xk):
                it['k'] += 1
            if maxiter > 0:
                x, _ = spsla.minres(Aop, b, x0=x0, rtol=tol, maxiter=maxiter, M=Mop, callback=_cb)
            else:
                x    = x0.copy()
            res     = float(np.linalg.norm(matvec(x) - b))
            error   = res / rhs
            return SolverResult(x=x, converged=error <= tol, iterations=it['k'], residual_norm=res,
                                relative_error=error, residual_estimate=None, breakdown=False)
        return solver_func

    @staticmethod
    def solve_system(
            matvec          : MatVecFunc,
            b               : Array,
            x0              : Array,
            *,
            tol             : float,
            maxiter         : int,
            precond_apply   : Optional[PrecondApplyFunc]    = None,
            backend_module  : Any                           = np,
            **kwargs        : Any) -> SolverResult:
        """
        Static solve through SciPy's MINRES.
        """
        solver_func = MinresSolverScipy.get_solver_func(backend_module)
        b           = np.asarray(b)
        x0          = np.asarray(x0)
        _check_inputs(b, x0, tol, maxiter)
        dtype       = working_dtype(b, x0)
        return solver_func(matvec, b.astype(dtype), x0.astype(dtype), tol, int(maxiter), precond_apply)

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
