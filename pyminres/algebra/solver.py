'''
file:       pyminres/algebra/solver.py

Defines the abstract interface and helper structures for solving symmetric
linear systems

$$
Ax = b,
$$

optionally with a symmetric positive definite preconditioner M, given as the
action $r \\mapsto M^{-1} r$.

Two layers are provided:

- a static, backend-aware entry point `solve_system(matvec, b, x0, ...)` that
  concrete algorithms implement (NumPy kernel, JAX kernel),
- a stateful wrapper with `compute(a)` / `solve(b)` / `solve_with_guess(b, x0)`
  that stores the operator and the preconditioner, holds the iteration and
  tolerance configuration and reports the status of the last solve.
'''

import numpy as np
from typing import Optional, Callable, Union, Any, NamedTuple, Type, List
from abc import ABC, abstractmethod
from enum import Enum, auto, unique

# -----------------------------------------------------------------------------

from .utils import JAX_AVAILABLE, Array, DEFAULT_NP_FLOAT_TYPE, get_backend, machine_epsilon, working_dtype
from ..common.flog import get_global_logger, Logger

# -----------------------------------------------------------------------------
#! Type hints
# -----------------------------------------------------------------------------

MatVecFunc          = Callable[[Array], Array]
PrecondApplyFunc    = Callable[[Array], Array]
StaticSolverFunc    = Callable[..., 'SolverResult']

# -----------------------------------------------------------------------------

@unique
class SolverType(Enum):
    """
    Enumeration class for the different types of solvers.
    """
    MINRES          = auto()    # native minimum residual
    SCIPY_MINRES    = auto()    # wrapper around scipy.sparse.linalg.minres

@unique
class ComputationInfo(Enum):
    """
    Status of the last computation.
    """
    SUCCESS         = 0
    NUMERICAL_ISSUE = 1
    NO_CONVERGENCE  = 2
    INVALID_INPUT   = 3

@unique
class InitialGuess(Enum):
    """
    Initial guess used by `Solver.solve` when none is given.
    """
    ONES            = auto()
    ZEROS           = auto()

# -----------------------------------------------------------------------------
#! Errors
# -----------------------------------------------------------------------------

class SolverErrorMsg(Enum):
    '''
    Enumeration class for solver error messages.
    '''
    MATVEC_FUNC_NOT_SET = 101
    MAT_NOT_SET         = 102
    CONV_FAILED         = 105
    DIM_MISMATCH        = 106
    METHOD_NOT_IMPL     = 109
    PRECOND_INVALID     = 110
    BACKEND_MISMATCH    = 111
    INVALID_INPUT       = 112

    def __str__(self):
        return self.name.replace('_', ' ').title()

    def __repr__(self):
        return f"<{self.__class__.__name__}.{self.name}: '{str(self)}'>"

class SolverError(Exception):
    '''
    Base class for exceptions in the solver module.
    '''
    def __init__(self, code: SolverErrorMsg, message: Optional[str] = None):
        self.code       = code
        self.message    = message if message else str(code)
        super().__init__(self.message)

    def __str__(self):
        return f"[SolverError {self.code.name} ({self.code.value})]: {self.message}"

    def __repr__(self):
        return self.__str__()

class SolverResult(NamedTuple):
    '''
    Stores the result of a solver's static execution.

    Attributes:
        x (Array):
            The computed solution vector.
        converged (bool):
            Whether the solver reached the desired tolerance.
        iterations (int):
            The number of iterations performed.
        residual_norm (Optional[float]):
            The norm of the final residual (||b - Ax||).
        relative_error (Optional[float]):
            ||b - Ax|| / ||b|| (0 for b = 0).
        residual_estimate (Optional[float]):
            MINRES residual estimate relative to the initial preconditioned
            residual. Informational only.
        breakdown (bool):
            Whether the iteration stopped on a numerical breakdown.
    '''
    x                   : Array
    converged           : bool
    iterations          : int
    residual_norm       : Optional[float]
    relative_error      : Optional[float]   = None
    residual_estimate   : Optional[float]   = None
    breakdown           : bool              = False

# -----------------------------------------------------------------------------
#! General Solver Abstract Base Class
# -----------------------------------------------------------------------------

class Solver(ABC):
    '''
    Abstract base class for iterative solvers of symmetric systems

    $$
    Ax = b.
    $$

    Concrete algorithms provide the static `solve_system` (and
    `get_solver_func` returning the backend kernel). The instance side keeps
    the operator, the preconditioner and the configuration:

        >>> solver = MinresSolver(a)                 # compute(a) on construction
        >>> x      = solver.solve(b)                 # initial guess: ones
        >>> solver.info, solver.iterations, solver.error

    Configuration:
        - max_iterations : default N (operator size)
        - tolerance      : default machine epsilon of the working dtype
        - initial_guess  : InitialGuess.ONES (default), ZEROS or callable n -> x0
    '''
    _solver_type : Optional[SolverType] = None
    _name        : str                  = "Solver"
    _dcol        : str                  = "blue"

    def __init__(self,
                a               : Optional[Any]                     = None,
                *,
                uplo            : str                               = 'lower',
                precond         : Any                               = 'jacobi',
                maxiter         : Optional[int]                     = None,
                eps             : Optional[float]                   = None,
                initial_guess   : Union[InitialGuess, Callable]     = InitialGuess.ONES,
                sigma           : float                             = 0.0,
                shape           : Optional[tuple]                   = None,
                backend         : str                               = 'default',
                dtype           : Optional[Type]                    = None,
                verbose         : bool                              = False):
        '''
        Args:
            a (optional):
                Operator: dense / sparse matrix, SymmetricOperator,
                LinearOperator or callable (the latter needs `shape`).
                If given, `compute(a)` is called.
            uplo (str):
                Triangular half read from an explicit matrix ('lower', 'upper', 'full').
            precond:
                Preconditioner id ('jacobi', 'identity', enum, int), instance,
                object exposing `solve`, callable r -> M^{-1} r, or None.
            maxiter (int, optional):
                Maximum number of iterations. Defaults to the operator size.
            eps (float, optional):
                Relative tolerance on ||Ax - b|| / ||b||. Defaults to machine epsilon.
            initial_guess:
                InitialGuess.ONES, InitialGuess.ZEROS or a callable n -> x0.
            sigma (float):
                Shift used by the preconditioner setup.
            shape (tuple, optional):
                Operator shape for plain callables.
            backend (str):
                'numpy', 'jax' or 'default' (active backend).
            dtype (Type, optional):
                Minimal working dtype; the right-hand side and operator may promote it.
            verbose (bool):
                Log a summary of each solve at info level.
        '''
        self._logger        : Logger    = get_global_logger()
        self._backend_str   : str
        self._backend       : Any
        self._backend_sp    : Any
        self._isjax         : bool
        self._set_backend(backend)

        self._dtype                     = dtype
        self._uplo                      = uplo
        self._precond_spec              = precond
        self._sigma                     = sigma
        self._verbose                   = verbose

        if maxiter is not None and maxiter < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"maxiter must be non-negative, got {maxiter}.")
        if eps is not None and eps < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"eps must be non-negative, got {eps}.")
        self._maxiter                   = maxiter
        self._eps                       = eps
        self._initial_guess             = initial_guess

        # operator state
        self._op                        = None
        self._matvec    : Optional[MatVecFunc]  = None
        self._n         : Optional[int]         = None
        self._precond                   = None
        self._precond_apply             = None
        self._is_initialized            = False
        self._analysis_done             = False

        # results of the last solve
        self._info      : ComputationInfo       = ComputationInfo.SUCCESS
        self._last_solution             : Optional[Array]   = None
        self._last_converged            : Optional[bool]    = None
        self._last_iterations           : Optional[int]     = None
        self._last_error                : Optional[float]   = None
        self._last_residual_norm        : Optional[float]   = None
        self._last_results              : List[SolverResult] = []

        if a is not None:
            self.compute(a, shape=shape)

    # -------------------------------------------------------------------------

    def _set_backend(self, backend: str):
        """
        Internal method to set backend attributes.
        """
        self._backend, self._backend_sp = get_backend(backend, scipy=True)
        self._isjax                     = JAX_AVAILABLE and self._backend is not np
        self._backend_str               = 'jax' if self._isjax else 'numpy'

    def log(self, msg : str, log : Union[int, str] = 'info', lvl : int = 0, color : str = "white"):
        '''
        Log the message prefixed with the solver name.
        '''
        if isinstance(log, str):
            log = Logger.LEVELS_R[log]
        self._logger.say(f"[{self._name}] {msg}", log=log, lvl=lvl, color=color)

    # -------------------------------------------------------------------------
    #! Static Solve Interface
    # -------------------------------------------------------------------------

    @staticmethod
    @abstractmethod
    def get_solver_func(backend_module: Any) -> StaticSolverFunc:
        '''
        Return the kernel for the given backend, with signature
        (matvec, b, x0, tol, maxiter, precond_apply) -> SolverResult.
        '''
        raise NotImplementedError(str(SolverErrorMsg.METHOD_NOT_IMPL))

    @staticmethod
    @abstractmethod
    def solve_system(
            matvec          : MatVecFunc,
            b               : Array,
            x0              : Array,
            *,
            tol             : float,
            maxiter         : int,
            precond_apply   : Optional[PrecondApplyFunc] = None,
            backend_module  : Any = np,
            **kwargs        : Any
            ) -> SolverResult:
        """
        Abstract Static:
            Solves the linear system Ax = b using a specific algorithm.

        Args:
            matvec:
                Function implementing the matrix-vector product A @ x.
            b:
                Right-hand side vector (as `backend_module` array).
            x0:
                Initial guess vector (as `backend_module` array).
            tol:
                Relative convergence tolerance (||Ax - b|| / ||b||).
            maxiter:
                Maximum number of iterations.
            precond_apply:
                Function applying the preconditioner, r -> M^{-1}r (optional).
            backend_module:
                The numerical backend module (`numpy` or `jax.numpy`).

        Returns:
            SolverResult

        Raises:
            SolverError:
                If inputs are invalid.
        """
        raise NotImplementedError(str(SolverErrorMsg.METHOD_NOT_IMPL))

    # -------------------------------------------------------------------------
    #! Operator setup
    # -------------------------------------------------------------------------

    def analyze_pattern(self, a: Any, shape: Optional[tuple] = None) -> 'Solver':
        '''
        Store the operator and determine its size. The preconditioner is not
        touched; call `factorize` (or use `compute`) before solving.
        '''
        from .operators import as_operator, as_matvec, operator_size

        # traced JAX kernels need the stored triangle as a JAX array
        if self._isjax and isinstance(a, np.ndarray):
            a = self._backend.asarray(a)
        op = as_operator(a, uplo=self._uplo)
        n  = operator_size(op, shape)
        if n is None:
            raise SolverError(SolverErrorMsg.INVALID_INPUT,
                "Cannot determine the operator size; pass shape=(n, n) for plain callables.")

        self._op                = op
        self._shape             = (n, n)
        self._matvec            = as_matvec(op)
        self._n                 = n
        self._analysis_done     = True
        self._is_initialized    = False
        return self

    def factorize(self, a: Optional[Any] = None, shape: Optional[tuple] = None) -> 'Solver':
        '''
        Set up the preconditioner from the operator. If `a` is given, it
        replaces the stored operator.
        '''
        from .preconditioners import Preconditioner, choose_precond, as_precond_apply, JacobiPreconditioner

        if a is not None:
            self.analyze_pattern(a, shape=shape)
        if not self._analysis_done:
            raise SolverError(SolverErrorMsg.MAT_NOT_SET, "No operator set; call compute(a) or analyze_pattern(a) first.")

        requested = self._precond_spec
        if isinstance(requested, (str, int, Enum)) and not isinstance(requested, bool):
            precond = choose_precond(requested, backend=self._backend_str)
        else:
            precond = requested

        if isinstance(precond, JacobiPreconditioner) and not hasattr(self._op, 'diagonal'):
            self.log("Operator exposes no diagonal, Jacobi preconditioner replaced by identity.", log='warning', lvl=1, color='yellow')
            precond = choose_precond('identity', backend=self._backend_str)

        if isinstance(precond, Preconditioner) and precond.needs_setup:
            precond.set(self._op, sigma=self._sigma)

        self._precond           = precond
        self._precond_apply     = as_precond_apply(precond)
        self._is_initialized    = True
        self.log(f"Initialized: n={self._n}, preconditioner={precond}", log='debug', lvl=1, color=self._dcol)
        return self

    def compute(self, a: Any, shape: Optional[tuple] = None) -> 'Solver':
        '''
        Store the operator and set up the preconditioner, equivalent to
        `analyze_pattern(a)` followed by `factorize()`.

        Returns:
            self
        '''
        self.analyze_pattern(a, shape=shape)
        return self.factorize()

    # -------------------------------------------------------------------------
    #! Configuration
    # -------------------------------------------------------------------------

    def set_max_iterations(self, maxiter: int) -> 'Solver':
        ''' Set the iteration budget; returns self. '''
        if maxiter < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"maxiter must be non-negative, got {maxiter}.")
        self._maxiter = int(maxiter)
        return self

    def set_tolerance(self, tol: float) -> 'Solver':
        ''' Set the relative tolerance; returns self. '''
        if tol < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"tolerance must be non-negative, got {tol}.")
        self._eps = float(tol)
        return self

    @property
    def max_iterations(self) -> int:
        ''' Iteration budget: explicit value or the operator size. '''
        if self._maxiter is not None:
            return self._maxiter
        return self._n if self._n is not None else 0

    @max_iterations.setter
    def max_iterations(self, value: int):
        self.set_max_iterations(value)

    @property
    def tolerance(self) -> float:
        ''' Relative tolerance: explicit value or the machine epsilon of the working dtype. '''
        if self._eps is not None:
            return self._eps
        return machine_epsilon(self._working_dtype())

    @tolerance.setter
    def tolerance(self, value: float):
        self.set_tolerance(value)

    @property
    def initial_guess(self) -> Union[InitialGuess, Callable]:
        return self._initial_guess

    @initial_guess.setter
    def initial_guess(self, value: Union[InitialGuess, Callable]):
        if not isinstance(value, InitialGuess) and not callable(value):
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"initial_guess must be an InitialGuess or a callable, got {type(value)}.")
        self._initial_guess = value

    def _working_dtype(self, *arrays) -> np.dtype:
        dtypes = [d for d in (self._dtype, getattr(self._op, 'dtype', None)) if d is not None]
        if not dtypes and not arrays:
            return np.dtype(DEFAULT_NP_FLOAT_TYPE)
        return working_dtype(*[np.empty(0, dtype=d) for d in dtypes], *arrays)

    # -------------------------------------------------------------------------
    #! Solve
    # -------------------------------------------------------------------------

    def _make_initial_guess(self, n: int, dtype) -> Array:
        be = self._backend
        if self._initial_guess is InitialGuess.ONES:
            return be.ones(n, dtype=dtype)
        if self._initial_guess is InitialGuess.ZEROS:
            return be.zeros(n, dtype=dtype)
        x0 = be.asarray(self._initial_guess(n), dtype=dtype)
        if x0.shape != (n,):
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Initial guess callable returned shape {x0.shape}, expected ({n},).")
        return x0

    def _check_ready(self, b: Any) -> Array:
        if not self._is_initialized:
            raise SolverError(SolverErrorMsg.MAT_NOT_SET, "Solver is not initialized; call compute(a) first.")
        b_be = self._backend.asarray(b)
        if b_be.ndim not in (1, 2) or b_be.shape[0] != self._n:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH,
                f"Right-hand side of shape {b_be.shape} does not match operator of size {self._n}.")
        return b_be

    def solve(self, b: Array) -> Array:
        '''
        Solve A x = b starting from the configured initial guess.

        Args:
            b (Array):
                Right-hand side, shape (N,) or (N, k).
        Returns:
            Array:
                The solution, same shape as b.
        '''
        b_be    = self._check_ready(b)
        dtype   = self._working_dtype(b_be)
        x0      = self._make_initial_guess(self._n, dtype)
        if b_be.ndim == 2:
            x0  = self._backend.tile(x0[:, None], (1, b_be.shape[1]))
        return self._solve_impl(b_be, x0, dtype)

    def solve_with_guess(self, b: Array, x0: Array) -> Array:
        '''
        Solve A x = b starting from the supplied guess x0 (not modified).
        '''
        b_be    = self._check_ready(b)
        x0_be   = self._backend.asarray(x0)
        if x0_be.shape != b_be.shape:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Shape mismatch: b={b_be.shape}, x0={x0_be.shape}")
        dtype   = self._working_dtype(b_be, x0_be)
        return self._solve_impl(b_be, x0_be, dtype)

    def _solve_impl(self, b: Array, x0: Array, dtype) -> Array:
        be          = self._backend
        tol         = self.tolerance
        maxiter     = self.max_iterations
        columns     = [b] if b.ndim == 1 else [b[:, j] for j in range(b.shape[1])]
        guesses     = [x0] if b.ndim == 1 else [x0[:, j] for j in range(b.shape[1])]
        results     = []

        for b_col, x_col in zip(columns, guesses):
            result  = self.__class__.solve_system(
                            self._matvec,
                            be.asarray(b_col, dtype=dtype),
                            be.asarray(x_col, dtype=dtype),
                            tol             = tol,
                            maxiter         = maxiter,
                            precond_apply   = self._precond_apply,
                            backend_module  = be)
            results.append(result)

        x = results[0].x if b.ndim == 1 else be.stack([r.x for r in results], axis=1)
        self._store_results(results, x, tol)
        return x

    def _store_results(self, results: List[SolverResult], x: Array, tol: float):
        last                        = results[-1]
        self._last_results          = results
        self._last_solution         = x
        self._last_iterations       = int(last.iterations)
        self._last_error            = float(last.relative_error) if last.relative_error is not None else None
        self._last_residual_norm    = float(last.residual_norm) if last.residual_norm is not None else None
        self._last_converged        = all(bool(r.converged) for r in results)

        if all(r.relative_error is not None and float(r.relative_error) <= tol for r in results):
            self._info = ComputationInfo.SUCCESS
        elif any(bool(r.breakdown) and not bool(r.converged) for r in results):
            self._info = ComputationInfo.NUMERICAL_ISSUE
            self.log(f"Numerical breakdown after {self._last_iterations} iterations, error={self._last_error:.3e}",
                    log='warning', lvl=1, color='yellow')
        else:
            self._info = ComputationInfo.NO_CONVERGENCE

        self.log(f"Finished: info={self._info.name}, iterations={self._last_iterations}, error={self._last_error:.3e} (tol={tol:.3e})",
                log='info' if self._verbose else 'debug', lvl=1, color=self._dcol)

    # -------------------------------------------------------------------------
    #! Properties for Last Result
    # -------------------------------------------------------------------------

    @property
    def info(self) -> ComputationInfo:
        ''' Status of the last solve. '''
        return self._info

    @property
    def solution(self) -> Optional[Array]:
        ''' What is the last solution? '''
        return self._last_solution

    @property
    def converged(self) -> Optional[bool]:
        ''' Did every column of the last solve converge? '''
        return self._last_converged

    @property
    def iterations(self) -> Optional[int]:
        ''' Iterations of the last solved column. '''
        return self._last_iterations

    @property
    def error(self) -> Optional[float]:
        ''' Relative residual ||Ax - b|| / ||b|| of the last solved column. '''
        return self._last_error

    @property
    def residual_norm(self) -> Optional[float]:
        ''' ||Ax - b|| of the last solved column. '''
        return self._last_residual_norm

    @property
    def results(self) -> List[SolverResult]:
        ''' Per-column results of the last solve. '''
        return self._last_results

    # -------------------------------------------------------------------------
    #! Properties for Configuration
    # -------------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def size(self) -> Optional[int]:
        return self._n

    @property
    def operator(self) -> Any:
        return self._op

    @property
    def preconditioner(self) -> Any:
        return self._precond

    @property
    def backend_str(self) -> str:
        ''' Backend string '''
        return self._backend_str

    @property
    def dtype(self) -> Optional[Type]:
        return self._dtype

    # -------------------------------------------------------------------------

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(type={self._solver_type.name if self._solver_type else 'Unknown'}, "
                f"backend='{self.backend_str}', n={self._n})")

    def __str__(self) -> str:
        return self.__repr__()

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
