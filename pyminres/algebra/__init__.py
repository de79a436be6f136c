"""
Linear algebra layer of pyminres: the MINRES solver, its operator and
preconditioner interfaces, and backend utilities (NumPy, optional JAX).

Submodules and their main exports are imported lazily on first access, so
`import pyminres.algebra` stays cheap (no numba compilation, no JAX import).

Example:
    >>> from pyminres.algebra import MinresSolver, SymmetricOperator
    >>> solver = MinresSolver(SymmetricOperator(a), eps=1e-10)
    >>> x = solver.solve(b)
"""

from typing import TYPE_CHECKING
import importlib

# -----------------------------------------------------------------------------------------------
# Lazy Import Configuration
# -----------------------------------------------------------------------------------------------

_LAZY_IMPORTS = {
    # solvers
    'MinresSolver'          : ('.solvers.minres', 'MinresSolver'),
    'MinresSolverScipy'     : ('.solvers.minres', 'MinresSolverScipy'),
    'minres_kernel'         : ('.solvers.minres', 'minres_kernel'),
    'MinresKernelOutput'    : ('.solvers.minres', 'MinresKernelOutput'),
    'choose_solver'         : ('.solvers', 'choose_solver'),
    # base types
    'Solver'                : ('.solver', 'Solver'),
    'SolverType'            : ('.solver', 'SolverType'),
    'SolverError'           : ('.solver', 'SolverError'),
    'SolverErrorMsg'        : ('.solver', 'SolverErrorMsg'),
    'SolverResult'          : ('.solver', 'SolverResult'),
    'ComputationInfo'       : ('.solver', 'ComputationInfo'),
    'InitialGuess'          : ('.solver', 'InitialGuess'),
    # operators
    'SymmetricOperator'     : ('.operators', 'SymmetricOperator'),
    'as_matvec'             : ('.operators', 'as_matvec'),
    # preconditioners
    'Preconditioner'        : ('.preconditioners', 'Preconditioner'),
    'IdentityPreconditioner': ('.preconditioners', 'IdentityPreconditioner'),
    'JacobiPreconditioner'  : ('.preconditioners', 'JacobiPreconditioner'),
    'choose_precond'        : ('.preconditioners', 'choose_precond'),
    'as_precond_apply'      : ('.preconditioners', 'as_precond_apply'),
    # utils
    'get_backend'           : ('.utils', 'get_backend'),
    'backend_mgr'           : ('.utils', 'backend_mgr'),
    'get_logger'            : ('..common.flog', 'get_global_logger'),
    # submodules
    'solvers'               : ('.solvers', None),
    'solver'                : ('.solver', None),
    'operators'             : ('.operators', None),
    'preconditioners'       : ('.preconditioners', None),
    'utils'                 : ('.utils', None),
}

_LAZY_CACHE = {}

if TYPE_CHECKING:
    from .solvers.minres import MinresSolver, MinresSolverScipy, minres_kernel, MinresKernelOutput
    from .solvers import choose_solver
    from .solver import Solver, SolverType, SolverError, SolverErrorMsg, SolverResult, ComputationInfo, InitialGuess
    from .operators import SymmetricOperator, as_matvec
    from .preconditioners import Preconditioner, IdentityPreconditioner, JacobiPreconditioner, choose_precond, as_precond_apply
    from .utils import get_backend, backend_mgr
    from ..common.flog import get_global_logger as get_logger

# -----------------------------------------------------------------------------------------------
# Lazy Import Implementation
# -----------------------------------------------------------------------------------------------

def _lazy_import(name: str):
    """
    Lazily import a module or attribute based on _LAZY_IMPORTS configuration.
    """
    if name in _LAZY_CACHE:
        return _LAZY_CACHE[name]

    if name not in _LAZY_IMPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_path, attr_name  = _LAZY_IMPORTS[name]
    module                  = importlib.import_module(module_path, package=__name__)
    result                  = module if attr_name is None else getattr(module, attr_name)
    _LAZY_CACHE[name]       = result
    return result

def __getattr__(name: str):
    return _lazy_import(name)

def __dir__():
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = list(_LAZY_IMPORTS.keys())

# -----------------------------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------------------------
