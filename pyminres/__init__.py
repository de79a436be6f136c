# pyminres/__init__.py

"""
pyminres - preconditioned MINRES for sparse symmetric (possibly indefinite) systems.

The package solves A x = b for symmetric / Hermitian A with the Minimum
Residual method: a preconditioned Lanczos recurrence combined with
continuously updated Givens rotations. NumPy is the default backend; a JAX
kernel is available when PY_BACKEND=jax and JAX is installed.

Modules:
--------
- algebra   : MINRES kernel and solver classes, operators, preconditioners, backends
- common    : logging

Examples:
---------
>>> import numpy as np
>>> from pyminres.algebra import MinresSolver
>>> a = np.diag([2.0, -3.0, 5.0])
>>> x = MinresSolver(a, eps=1e-10).solve(np.array([2.0, -3.0, 5.0]))

File    : pyminres/__init__.py
Version : 0.1.0
"""

import importlib

# Package metadata
__version__         = "0.1.0"
__license__         = "MIT"

MODULE_DESCRIPTION  = "Preconditioned MINRES solver for sparse symmetric linear systems."

# List of available modules (not imported by default)
__all__             = ["algebra", "common"]

def get_module_description(module_name):
    """
    Get the description of a specific module in the pyminres package.
    """
    descriptions = {
        "algebra"   : "MINRES kernel (NumPy / JAX), solver wrappers, symmetric operators and preconditioners.",
        "common"    : "Console and file logging.",
    }
    return descriptions.get(module_name, "Module not found.")

def list_available_modules():
    """
    List all available modules in the pyminres package.
    """
    return __all__

# Lazy import subpackages on attribute access (PEP 562)
def __getattr__(name):
    if name in __all__:
        return importlib.import_module(f".{name}", __name__)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

def __dir__():
    return sorted(list(globals().keys()) + __all__)
