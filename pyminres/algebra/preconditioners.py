'''
file:       pyminres/algebra/preconditioners.py

Preconditioners for the MINRES solver. A preconditioner M approximates A and
the solver only needs the action

$$
r \\mapsto M^{-1} r,
$$

exposed as `solve(r)` (and `__call__(r)`). MINRES requires M to be symmetric
positive definite: the Lanczos recurrence takes $\\sqrt{\\langle v, M^{-1} v \\rangle}$
at every step.

Provided:
    - IdentityPreconditioner : M = I, reproduces the unpreconditioned run.
    - JacobiPreconditioner   : M = |diag(A) + sigma|, zero entries map to 1.

`as_precond_apply` turns whatever the caller passed (None, a Preconditioner,
an object exposing `solve`, a callable) into the r -> M^{-1} r callable that
the kernels consume.
'''

from abc import ABC, abstractmethod
from typing import Union, Callable, Optional, Any, Type, Tuple, Dict
from enum import Enum, unique
import inspect
import numpy as np

from .utils import JAX_AVAILABLE, get_backend, Array
from .solver import SolverError, SolverErrorMsg
from ..common.flog import get_global_logger, Logger

# ---------------------------------------------------------------------

PreconditionerApplyFun  = Callable[[Array], Array]
# setup returns a dictionary of precomputed data
StaticSetupKernel       = Callable[..., Dict[str, Any]]
# r, backend_mod, sigma, precomputed_data
StaticApplyKernel       = Callable[[Array, Any, float, Dict[str, Any]], Array]

_TOLERANCE_SMALL        = 0.0

def preconditioner_idn(r: Array) -> Array:
    """
    Identity function for preconditioner apply.

    Parameters:
        r (Array): The input array.

    Returns:
        Array: The same input array.
    """
    return r

@unique
class PreconditionersTypeSym(Enum):
    """
    Symmetric positive definite preconditioners usable with MINRES.
    """
    IDENTITY            = 0
    JACOBI              = 1

# ---------------------------------------------------------------------
#! Preconditioners
# ---------------------------------------------------------------------

class Preconditioner(ABC):
    """
    Abstract base class for preconditioners M used by the MINRES solver.

    Concrete classes provide two static kernels:
        - `_setup_standard_kernel(a, sigma, backend_mod)` computing a dict of
          precomputed data from the operator,
        - `_apply_kernel(r, backend_mod, sigma, **data)` applying M^{-1} r.

    The instance stores the precomputed data after `set` and exposes
    `solve(r)` / `__call__(r)`.

    Attributes:
        sigma (float):
            Shift added to the operator during setup (M built from A + sigma I).
        type (PreconditionersTypeSym):
            The specific type of the preconditioner.
        backend_str (str):
            The name of the current backend ('numpy', 'jax').
    """

    _type           : Optional[PreconditionersTypeSym]  = None
    _name           : str                               = "General Preconditioner"
    _dcol           : str                               = "yellow"
    _needs_setup    : bool                              = True

    # -----------------------------------------------------------------

    def __init__(self, backend: str = 'default'):
        """
        Parameters:
            backend (str):
                The computational backend ('numpy', 'jax' or 'default').
        """
        self._logger    : Logger                    = get_global_logger()
        self._sigma     : float                     = 0.0
        self._precomputed_data_instance : Optional[Dict[str, Any]] = None
        self._backend_str                           = None
        self.reset_backend(backend)

    # -----------------------------------------------------------------
    #! Logging
    # -----------------------------------------------------------------

    def log(self, msg : str, log : Union[int, str] = Logger.LEVELS_R['info'],
        lvl : int = 0, color : str = "white", append_msg = True):
        """
        Log the message.

        Args:
            msg (str) :
                The message to log.
            log (Union[int, str]) :
                The level to log the message at (default is 'info').
            lvl (int) :
                Indentation level of the message.
            color (str) :
                The color of the message.
            append_msg (bool) :
                Prefix the message with the preconditioner name.
        """
        if isinstance(log, str):
            log = Logger.LEVELS_R[log]
        if append_msg:
            msg = f"[{self._name}] {msg}"
        self._logger.say(msg, log=log, lvl=lvl, color=color)

    # -----------------------------------------------------------------
    #! Backend Management
    # -----------------------------------------------------------------

    def reset_backend(self, backend: str):
        '''
        Resets the backend used by the kernels.

        Parameters:
            backend (str): The name of the new backend ('numpy', 'jax', 'default').
        '''
        if self._backend_str == backend:
            return
        self._backend, self._backends   = get_backend(backend, scipy=True)
        self._backend_str               = 'jax' if (JAX_AVAILABLE and self._backend is not np) else 'numpy'
        self._isjax                     = self._backend_str == 'jax'
        self.log(f"Backend: {self._backend_str}", log='debug', lvl=1, color=self._dcol)

    # -----------------------------------------------------------------
    #! KERNELS
    # -----------------------------------------------------------------

    @staticmethod
    @abstractmethod
    def _setup_standard_kernel(a: Any, sigma: float, backend_mod: Any, **kwargs) -> Dict[str, Any]:
        """Static Kernel: Computes precond data dict from the operator A."""
        raise NotImplementedError

    @staticmethod
    @abstractmethod
    def _apply_kernel(r: Array, backend_mod: Any, sigma: float, **precomputed_data: Any) -> Array:
        """Static Kernel: Applies M^{-1}r using precomputed data."""
        raise NotImplementedError

    # -----------------------------------------------------------------
    #! Setup
    # -----------------------------------------------------------------

    def _get_precomputed_data_instance(self) -> Dict[str, Any]:
        """Instance: Returns the stored precomputed data."""
        if self._precomputed_data_instance is None:
            raise SolverError(SolverErrorMsg.PRECOND_INVALID,
                f"Preconditioner data not available - ({self._name}) not set up. Call set() first.")
        return self._precomputed_data_instance

    def set(self, a: Any, sigma: float = 0.0, backend: Optional[str] = None, **kwargs):
        '''
        Sets up the preconditioner from the operator A.

        Params:
            a:
                The operator: a matrix (dense or sparse) or any object
                exposing `diagonal()` and `shape`.
            sigma (float, optional):
                The shift. Defaults to 0.0.
            backend (Optional[str], optional):
                The backend to use for computations. Defaults to None.
            **kwargs:
                Additional keyword arguments for specific implementations.
        '''
        if backend is not None:
            self.reset_backend(backend)

        shape = getattr(a, 'shape', None)
        if shape is None or len(shape) != 2 or shape[0] != shape[1]:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"({self._name}) needs a square operator, got shape {shape}.")

        self._sigma = 0.0 if sigma is None else float(sigma)
        self.log(f"Setting up with sigma={self._sigma} on backend='{self._backend_str}'", log='debug', lvl=1, color=self._dcol)
        self._precomputed_data_instance = self.__class__._setup_standard_kernel(a, self._sigma, self._backend, **kwargs)
        return self

    # -----------------------------------------------------------------
    #! Apply
    # -----------------------------------------------------------------

    def solve(self, r: Array) -> Array:
        """
        Apply M^{-1} to the vector r.
        """
        data = self._get_precomputed_data_instance() if self._needs_setup else {}
        return self.__class__._apply_kernel(r, self._backend, self._sigma, **data)

    def __call__(self, r: Array) -> Array:
        return self.solve(r)

    def get_apply(self) -> PreconditionerApplyFun:
        """
        Returns the r -> M^{-1} r callable (bound `solve`).
        Raises if the preconditioner needs a setup that has not been done.
        """
        if self._needs_setup:
            self._get_precomputed_data_instance()
        return self.solve

    # -----------------------------------------------------------------
    #! Properties
    # -----------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> Optional[PreconditionersTypeSym]:
        return self._type

    @property
    def sigma(self) -> float:
        return self._sigma

    @property
    def backend_str(self) -> str:
        return self._backend_str

    @property
    def needs_setup(self) -> bool:
        ''' Whether `set` must be called before applying. '''
        return self._needs_setup

    @property
    def is_set(self) -> bool:
        ''' Whether the preconditioner can be applied. '''
        return (not self._needs_setup) or self._precomputed_data_instance is not None

    @property
    def precomputed_data(self) -> dict:
        return self._get_precomputed_data_instance()

    # -----------------------------------------------------------------

    def __repr__(self) -> str:
        return f"{self._name}(sigma={self._sigma}, backend='{self._backend_str}', type={self._type})"

    def __str__(self) -> str:
        return self.__repr__()

# =====================================================================
#! Identity preconditioner
# =====================================================================

class IdentityPreconditioner(Preconditioner):
    """
    Identity preconditioner, M = I. Returns the residual unchanged.
    """
    _name           = "Identity Preconditioner"
    _type           = PreconditionersTypeSym.IDENTITY
    _needs_setup    = False

    @staticmethod
    def _setup_standard_kernel(a: Any, sigma: float, backend_mod: Any, **kwargs) -> Dict[str, Any]:
        return {}

    @staticmethod
    def _apply_kernel(r: Array, backend_mod: Any, sigma: float, **precomputed_data: Any) -> Array:
        return r

# =====================================================================
#! Jacobi preconditioner
# =====================================================================

class JacobiPreconditioner(Preconditioner):
    """
    Jacobi (diagonal) preconditioner.

    Math:
        M       = |diag(A) + sigma|
        M^{-1}r = r_i / |A_ii + sigma|,     with 1 / 0 -> 1

    The magnitude keeps M positive definite for indefinite A, which MINRES
    requires. Diagonal entries whose magnitude is not above `tol_small`
    (exact zeros by default) leave the corresponding component unscaled.

    References:
        - Saad, Y. (2003). Iterative Methods for Sparse Linear Systems (2nd ed.). SIAM. Chapter 10.
    """
    _name = "Jacobi Preconditioner"
    _type = PreconditionersTypeSym.JACOBI

    def __init__(self, backend: str = 'default', tol_small: float = _TOLERANCE_SMALL):
        """
        Args:
            backend (str):
                The computational backend.
            tol_small (float):
                Diagonal magnitudes not exceeding this value are treated as zero.
        """
        super().__init__(backend=backend)
        self._tol_small = tol_small

    # -----------------------------------------------------------------

    @staticmethod
    def _static_compute_inv_diag(diag_a: Array, sigma: float, backend_mod: Any, tol_small: float) -> Array:
        """
        Inverse of the regularised diagonal magnitude, 1 / |A_ii + sigma|.
        Entries with |A_ii + sigma| <= tol_small map to 1.

        Parameters:
            diag_a (Array):
                Diagonal of the matrix A.
            sigma (float):
                Shift.
            backend_mod (Any):
                The backend module (np or jnp).
            tol_small (float):
                Threshold below which an entry counts as zero.
        Returns:
            Array:
                Real inverse diagonal.
        """
        be          = backend_mod
        mag         = be.abs(diag_a + sigma)
        is_small    = mag <= tol_small
        safe        = be.where(is_small, 1.0, mag)
        return be.where(is_small, 1.0, 1.0 / safe)

    @staticmethod
    def _extract_diagonal(a: Any, backend_mod: Any) -> Array:
        if hasattr(a, 'diagonal'):
            return backend_mod.asarray(a.diagonal())
        raise SolverError(SolverErrorMsg.PRECOND_INVALID,
            f"Jacobi preconditioner needs the operator diagonal; {type(a).__name__} does not provide one.")

    @staticmethod
    def _setup_standard_kernel(a: Any, sigma: float, backend_mod: Any, **kwargs) -> Dict[str, Any]:
        """
        Static Setup Kernel for Jacobi from the operator A.
        """
        tol_small   = kwargs.get('tol_small', _TOLERANCE_SMALL)
        diag_a      = JacobiPreconditioner._extract_diagonal(a, backend_mod)
        inv_diag    = JacobiPreconditioner._static_compute_inv_diag(diag_a, sigma, backend_mod, tol_small)
        return {'inv_diag': inv_diag}

    @staticmethod
    def _apply_kernel(r: Array, backend_mod: Any, sigma: float, **precomputed_data: Any) -> Array:
        '''
        Applies M^{-1}r using the inverse diagonal.

        Parameters:
            r (Array):
                The vector to precondition.
            backend_mod (Any):
                The backend module (np or jnp).
            sigma (float):
                Shift (already folded into the inverse diagonal).
            **precomputed_data (Any):
                Must include 'inv_diag'.
        Returns:
            Array:
                The preconditioned vector M^{-1}r.
        '''
        inv_diag = precomputed_data.get('inv_diag', None)
        if inv_diag is None:
            raise SolverError(SolverErrorMsg.PRECOND_INVALID, "Jacobi apply kernel requires 'inv_diag' in precomputed_data.")
        if r.shape[0] != inv_diag.shape[0]:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Shape mismatch in Jacobi apply: r={r.shape}, inv_diag={inv_diag.shape}")
        return inv_diag * r

    def set(self, a: Any, sigma: float = 0.0, backend: Optional[str] = None, **kwargs):
        kwargs.setdefault('tol_small', self._tol_small)
        return super().set(a, sigma=sigma, backend=backend, **kwargs)

    @property
    def inv_diag(self) -> Array:
        return self._get_precomputed_data_instance()['inv_diag']

# =====================================================================
#! Choose wisely
# =====================================================================

def _resolve_precond_type(precond_id: Any) -> PreconditionersTypeSym:
    """
    Convert a str / int / Enum identifier to a PreconditionersTypeSym member.

    Raises:
        ValueError:
            If the id is not recognized.
        TypeError:
            If the id is of an unsupported type.
    """
    if isinstance(precond_id, PreconditionersTypeSym):
        return precond_id
    if isinstance(precond_id, str):
        name = precond_id.strip().replace('-', '_').replace(' ', '_').upper()
        if name in ('NONE', 'IDN'):
            name = 'IDENTITY'
        elif name in ('DIAGONAL', 'DIAG'):
            name = 'JACOBI'
        try:
            return PreconditionersTypeSym[name]
        except KeyError as e:
            raise ValueError(f"Unknown preconditioner name: '{precond_id}'.") from e
    if isinstance(precond_id, int) and not isinstance(precond_id, bool):
        try:
            return PreconditionersTypeSym(precond_id)
        except ValueError as e:
            raise ValueError(f"Unknown preconditioner value: {precond_id}.") from e
    raise TypeError(f"Unsupported type for precond_id: {type(precond_id)}. Expected Enum, str, or int.")

def _get_precond_class(precond_type: PreconditionersTypeSym) -> Type[Preconditioner]:
    match precond_type:
        case PreconditionersTypeSym.IDENTITY:
            return IdentityPreconditioner
        case PreconditionersTypeSym.JACOBI:
            return JacobiPreconditioner
        case _:
            raise ValueError(f"Symmetric type {precond_type} not handled.")

def choose_precond(precond_id: Any, **kwargs) -> Optional[Preconditioner]:
    """
    Factory function to select and instantiate a preconditioner.

    Accepts various identifiers (Enum, str, int, instance) and passes kwargs
    to the specific preconditioner's constructor.

    Args:
        precond_id (Any): Identifier (instance, Enum, str, int) or None.
        **kwargs: Additional arguments for the constructor (e.g., backend='jax').

    Returns:
        Preconditioner: An instance of the selected preconditioner (None for None).

    Example:
        >>> p = choose_precond('jacobi')
        >>> p.set(a)
        >>> z = p(r)
    """
    if precond_id is None:
        return None

    if isinstance(precond_id, Preconditioner):
        if kwargs:
            get_global_logger().warning(f"Preconditioner instance provided; ignoring kwargs: {kwargs}")
        return precond_id

    precond_type    = _resolve_precond_type(precond_id)
    target_class    = _get_precond_class(precond_type)

    valid_args      = inspect.signature(target_class.__init__).parameters
    filtered_kwargs = {k: v for k, v in kwargs.items() if k in valid_args}
    ignored_kwargs  = {k: v for k, v in kwargs.items() if k not in valid_args and k != 'self'}
    if ignored_kwargs:
        get_global_logger().warning(f"Ignoring invalid kwargs for {target_class.__name__}: {ignored_kwargs}")
    return target_class(**filtered_kwargs)

def as_precond_apply(precond: Any) -> PreconditionerApplyFun:
    '''
    Adapt a preconditioner to the r -> M^{-1} r callable used by the kernels.

        - None                      -> identity
        - Preconditioner            -> its `solve` (must be set up)
        - object exposing `solve`   -> the bound method
        - callable                  -> itself
    '''
    if precond is None:
        return preconditioner_idn
    if isinstance(precond, Preconditioner):
        return precond.get_apply()
    solve = getattr(precond, 'solve', None)
    if callable(solve):
        return solve
    if callable(precond):
        return precond
    raise SolverError(SolverErrorMsg.PRECOND_INVALID,
        f"Invalid preconditioner type: {type(precond)}. Expected Preconditioner, object with solve(), callable or None.")

# =====================================================================
#! EOF
# =====================================================================
