'''
file:       pyminres/algebra/operators.py

Linear operators consumed by the iterative solvers.

A solver only needs the action $v \\mapsto Av$ of a symmetric (Hermitian)
operator. For an explicitly stored matrix only one triangular half is read,

$$
A = T + T^H - \\mathrm{diag}(T),
$$

where $T$ is the lower (or upper) triangle including the diagonal. The
other half of the storage is never touched, so it may hold anything.

`as_matvec` adapts every accepted operator form to a plain callable:
    - SymmetricOperator / any object exposing `apply(v)`
    - scipy.sparse.linalg.LinearOperator (its `matvec`)
    - dense numpy / jax arrays and scipy.sparse matrices
    - plain callables v -> A v
'''

from typing import Optional, Callable, Any, Tuple, Union

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spsla

from .utils import JAX_AVAILABLE, Array, is_jax_array, jnp
from .solver import SolverError, SolverErrorMsg, MatVecFunc

# -----------------------------------------------------------------------------

_UPLO_VALUES = ('lower', 'upper', 'full')

class SymmetricOperator:
    '''
    Symmetric (Hermitian) operator backed by one triangular half of a matrix.

    Parameters:
        a:
            Square matrix: numpy array, scipy.sparse matrix/array, or jax array.
        uplo:
            'lower' (default) or 'upper' selects the stored half,
            'full' uses the matrix as given.
    '''

    def __init__(self, a: Any, uplo: str = 'lower'):
        uplo = uplo.lower()
        if uplo not in _UPLO_VALUES:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"uplo must be one of {_UPLO_VALUES}, got '{uplo}'.")

        self._sparse    = sps.issparse(a)
        self._isjax     = is_jax_array(a)
        if not self._sparse and not self._isjax:
            a = np.asarray(a)

        if len(a.shape) != 2:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Operator must be a 2D matrix, got shape {a.shape}.")
        if a.shape[0] != a.shape[1]:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Operator must be square, got shape {a.shape}.")

        self._uplo      = uplo
        self._shape     = tuple(a.shape)
        self._dtype     = a.dtype
        self._diag      = a.diagonal() if self._sparse else (jnp.diag(a) if self._isjax else np.diag(a))

        if uplo == 'full':
            self._tri   = a.tocsr() if self._sparse else a
            self._tri_h = None
        elif self._sparse:
            self._tri   = (sps.tril(a) if uplo == 'lower' else sps.triu(a)).tocsr()
            self._tri_h = self._tri.conj().T.tocsr()
        elif self._isjax:
            self._tri   = jnp.tril(a) if uplo == 'lower' else jnp.triu(a)
            self._tri_h = jnp.conj(self._tri).T
        else:
            self._tri   = np.tril(a) if uplo == 'lower' else np.triu(a)
            self._tri_h = np.ascontiguousarray(self._tri.conj().T)

    # -------------------------------------------------------------------------

    def apply(self, x: Array) -> Array:
        '''
        Compute A @ x using the stored half.
        '''
        if x.shape[0] != self._shape[1]:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH,
                f"Operator of shape {self._shape} cannot act on a vector of length {x.shape[0]}.")
        if self._tri_h is None:
            return self._tri @ x
        return self._tri @ x + self._tri_h @ x - self._diag * x

    def __call__(self, x: Array) -> Array:
        return self.apply(x)

    def diagonal(self) -> Array:
        ''' Diagonal of the operator. '''
        return self._diag

    def to_dense(self) -> np.ndarray:
        ''' Full dense matrix reconstructed from the stored half. '''
        tri = self._tri.toarray() if self._sparse else np.asarray(self._tri)
        if self._tri_h is None:
            return tri
        return tri + tri.conj().T - np.diag(np.asarray(self._diag))

    # -------------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return self._shape

    @property
    def dtype(self):
        return self._dtype

    @property
    def uplo(self) -> str:
        return self._uplo

    @property
    def is_sparse(self) -> bool:
        return self._sparse

    def __repr__(self) -> str:
        kind = 'sparse' if self._sparse else ('jax' if self._isjax else 'dense')
        return f"SymmetricOperator(shape={self._shape}, dtype={self._dtype}, uplo='{self._uplo}', storage={kind})"

# -----------------------------------------------------------------------------
#! Adapters
# -----------------------------------------------------------------------------

def _is_matrix(a: Any) -> bool:
    return sps.issparse(a) or isinstance(a, np.ndarray) or (JAX_AVAILABLE and is_jax_array(a))

def as_operator(a: Any, uplo: str = 'lower') -> Any:
    '''
    Wrap an explicit matrix in a SymmetricOperator; other operator forms
    (objects with `apply`, LinearOperator, callables) are returned unchanged.
    '''
    if isinstance(a, SymmetricOperator):
        return a
    if _is_matrix(a):
        return SymmetricOperator(a, uplo=uplo)
    if hasattr(a, 'apply') or isinstance(a, spsla.LinearOperator) or callable(a):
        return a
    raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Unsupported operator type: {type(a)}.")

def operator_size(op: Any, shape: Optional[Tuple[int, int]] = None) -> Optional[int]:
    '''
    Size N of a square operator, or None when it cannot be determined
    (plain callables without an explicit `shape`).
    '''
    op_shape = shape if shape is not None else getattr(op, 'shape', None)
    if op_shape is None:
        return None
    if len(op_shape) != 2 or op_shape[0] != op_shape[1]:
        raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Operator must be square, got shape {tuple(op_shape)}.")
    return int(op_shape[0])

def as_matvec(op: Any, uplo: str = 'lower') -> MatVecFunc:
    '''
    Adapt any accepted operator form to a callable v -> A v.
    '''
    op = as_operator(op, uplo=uplo)
    if hasattr(op, 'apply'):
        return op.apply
    if isinstance(op, spsla.LinearOperator):
        return op.matvec
    return op

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
