'''
General tests for import behavior of the pyminres package.

Ensures that submodules are lazily imported and key exports are available.

Tests:
- Lazy loading of subpackages
- Key class/function exports
- Package metadata presence
'''

import sys
import types

# -------------------------------------------------------------------

def test_root_imports_lazy():
    import pyminres
    algebra = pyminres.algebra
    assert isinstance(algebra, types.ModuleType)
    assert "algebra" in dir(pyminres)

def test_algebra_import_does_not_compile_kernels():
    import pyminres.algebra
    solvers = pyminres.algebra.solvers
    assert isinstance(solvers, types.ModuleType)
    assert "MinresSolver" in pyminres.algebra.__all__

# -------------------------------------------------------------------

def test_algebra_exports():
    from pyminres.algebra import (
        MinresSolver, MinresSolverScipy, minres_kernel, choose_solver,
        SymmetricOperator, JacobiPreconditioner, ComputationInfo, SolverError
    )
    from pyminres.algebra.solver import Solver
    assert issubclass(MinresSolver, Solver)
    assert issubclass(MinresSolverScipy, Solver)
    assert callable(minres_kernel)
    assert callable(choose_solver)
    assert ComputationInfo.SUCCESS.value == 0
    assert issubclass(SolverError, Exception)

def test_unknown_attribute():
    import pytest
    import pyminres
    import pyminres.algebra
    with pytest.raises(AttributeError):
        pyminres.not_a_module
    with pytest.raises(AttributeError):
        pyminres.algebra.not_an_export

def test_common_exports():
    from pyminres.common import Logger, get_global_logger
    assert isinstance(get_global_logger(), Logger)

# -------------------------------------------------------------------

def test_package_metadata():
    import pyminres
    assert hasattr(pyminres, "__version__")
    assert pyminres.list_available_modules() == ["algebra", "common"]
    assert pyminres.get_module_description("algebra") != "Module not found."
    assert pyminres.get_module_description("lattices") == "Module not found."

# -------------------------------------------------------------------
#! End of file
# -------------------------------------------------------------------
