'''
Iterative solvers for symmetric linear systems.

Exports the solver classes, the SolverType enum and the `choose_solver`
factory. Solver classes are imported lazily, on first access.
----------------------------------------------------------------
File        : pyminres/algebra/solvers/__init__.py
Description : Factory and lazy exports of the MINRES solvers
              (native NumPy/JAX kernel and the SciPy reference wrapper).
----------------------------------------------------------------
'''

import inspect
import importlib
from typing import Union, Any, Type

from ..solver import Solver, SolverResult, SolverError, SolverErrorMsg, SolverType, ComputationInfo, InitialGuess

# -----------------------------------------------------------------------------
# Lazy Loading Configuration
# -----------------------------------------------------------------------------

_LAZY_MODULES = {
    'MinresSolver'              : '.minres',
    'MinresSolverScipy'         : '.minres',
    'MinresKernelOutput'        : '.minres',
    'minres_kernel'             : '.minres',
    'minres'                    : '.minres',
}

_SOLVER_ALIASES = {
    'MINRES'                    : SolverType.MINRES,
    'NATIVE'                    : SolverType.MINRES,
    'SCIPY_MINRES'              : SolverType.SCIPY_MINRES,
    'SCIPY'                     : SolverType.SCIPY_MINRES,
}

# -----------------------------------------------------------------------------

def _resolve_solver_class(solver_id: Union[str, int, SolverType, Type[Solver]]) -> Type[Solver]:
    if isinstance(solver_id, type) and issubclass(solver_id, Solver):
        return solver_id

    solver_type = None
    if isinstance(solver_id, SolverType):
        solver_type = solver_id
    elif isinstance(solver_id, str):
        solver_type = _SOLVER_ALIASES.get(solver_id.strip().replace('-', '_').upper())
    elif isinstance(solver_id, int) and not isinstance(solver_id, bool):
        try:
            solver_type = SolverType(solver_id)
        except ValueError as e:
            raise ValueError(f"Unknown solver value: {solver_id}") from e

    if solver_type is None:
        raise ValueError(f"Unknown solver identifier: {solver_id}")

    match solver_type:
        case SolverType.MINRES:
            from .minres import MinresSolver as target_class
        case SolverType.SCIPY_MINRES:
            from .minres import MinresSolverScipy as target_class
        case _:
            raise NotImplementedError(f"Solver type {solver_type} is defined but not mapped to a class.")
    return target_class

def choose_solver(solver_id: Union[str, int, SolverType, Type[Solver], Solver] = 'minres', **kwargs) -> Solver:
    """
    Factory function to select and instantiate a solver.

    Parameters
    ----------
    solver_id : Union[str, int, SolverType, Type[Solver], Solver]
        'minres' / 'scipy_minres', SolverType member or its value, a Solver
        subclass, or an instance (returned unchanged).
    **kwargs
        Constructor arguments (a, precond, maxiter, eps, initial_guess, backend, ...).
        Arguments the constructor does not accept are dropped with a warning.

    Returns
    -------
    Solver
        An instance of the selected solver class.

    Examples
    --------
    >>> solver = choose_solver("minres", a=a, eps=1e-10)
    >>> solver = choose_solver(SolverType.SCIPY_MINRES, precond=None)
    """
    if isinstance(solver_id, Solver):
        if kwargs:
            solver_id.log(f"Solver instance provided; ignoring kwargs: {list(kwargs)}", log='warning', color='yellow')
        return solver_id

    target_class    = _resolve_solver_class(solver_id)
    valid_params    = inspect.signature(target_class.__init__).parameters
    has_varkw       = any(p.kind == inspect.Parameter.VAR_KEYWORD for p in valid_params.values())
    filtered_kwargs = {k: v for k, v in kwargs.items() if k in valid_params or has_varkw}
    ignored         = [k for k in kwargs if k not in filtered_kwargs]
    solver          = target_class(**filtered_kwargs)
    if ignored:
        solver.log(f"Ignoring invalid kwargs: {ignored}", log='warning', color='yellow')
    return solver

# -----------------------------------------------------------------------------
# Module-level __getattr__ for Lazy Imports
# -----------------------------------------------------------------------------

def __getattr__(name):
    """
    Lazy import of solver classes when accessed directly (e.g. solvers.MinresSolver).
    """
    if name in _LAZY_MODULES:
        module = importlib.import_module(_LAZY_MODULES[name], package=__name__)
        return module if name == 'minres' else getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'Solver', 'SolverResult', 'SolverError', 'SolverErrorMsg', 'SolverType',
    'ComputationInfo', 'InitialGuess', 'choose_solver',
    'MinresSolver', 'MinresSolverScipy', 'MinresKernelOutput', 'minres_kernel'
]

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
