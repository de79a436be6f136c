# file        :   pyminres/algebra/utils.py

'''
Backend utilities for the algebra layer.

- Detects whether JAX can be used next to NumPy. JAX is only imported when
the environment asks for it (PY_BACKEND=jax), so the default import path
stays NumPy/SciPy only.

- Provides a small BackendManager holding the active numpy-like and
scipy-like modules, and `get_backend` to resolve a backend specifier.

- Provides dtype helpers used by the solvers (default float/complex types,
machine epsilon of a working dtype).

Environment variables:
    PY_BACKEND          : 'numpy' (default) or 'jax'
    PY_FLOATING_POINT   : 'float64' (default) or 'float32'
'''

import os
import logging
from typing import Union, Optional, TypeAlias, Type, Tuple, Any

import numpy as np
import scipy as sp

# ---------------------------------------------------------------------
#! Environment variable names
# ---------------------------------------------------------------------

PY_BACKEND_STR          : str               = "PY_BACKEND"
PY_FLOATING_POINT_STR   : str               = "PY_FLOATING_POINT"
PY_JAX_AVAILABLE_STR    : str               = "PY_JAX_AVAILABLE"

DEFAULT_BACKEND         : str               = "numpy"

PREFER_32BIT            : bool              = os.environ.get(PY_FLOATING_POINT_STR, "float64").lower() in ["32bit", "32", "float32", "float"]
PY_BACKEND              : str               = os.environ.get(PY_BACKEND_STR, DEFAULT_BACKEND).lower()
PREFER_JAX              : bool              = PY_BACKEND not in ("numpy", "np")

DEFAULT_NP_FLOAT_TYPE   : Type              = np.float32 if PREFER_32BIT else np.float64
DEFAULT_NP_CPX_TYPE     : Type              = np.complex64 if PREFER_32BIT else np.complex128

# ---------------------------------------------------------------------
#! JAX detection
# ---------------------------------------------------------------------

JAX_AVAILABLE           : bool              = False
jax                     : Optional[Any]     = None
jnp                     : Optional[Any]     = None
jsp                     : Optional[Any]     = None

if PREFER_JAX:
    try:
        import jax
        import jax.numpy as jnp
        import jax.scipy as jsp

        if not PREFER_32BIT:
            jax.config.update("jax_enable_x64", True)
        logging.getLogger('jax').setLevel(logging.WARNING)
        JAX_AVAILABLE = True
    except ImportError:
        JAX_AVAILABLE = False

os.environ[PY_JAX_AVAILABLE_STR] = "1" if JAX_AVAILABLE else "0"

if JAX_AVAILABLE:
    Array       : TypeAlias = Union[np.ndarray, jnp.ndarray]
else:
    Array       : TypeAlias = np.ndarray

# ---------------------------------------------------------------------
#! Backend manager
# ---------------------------------------------------------------------

class BackendManager:
    '''
    Holds the active backend: its name, numpy-like and scipy-like modules.
    '''

    def __init__(self, prefer_jax: bool = PREFER_JAX):
        self.name       = 'jax' if (prefer_jax and JAX_AVAILABLE) else 'numpy'
        self.np         = jnp if self.name == 'jax' else np
        self.scipy      = jsp if self.name == 'jax' else sp

    def set_active_backend(self, name: str):
        '''
        Switch the active backend ('numpy' or 'jax').
        '''
        name = name.lower()
        if name in ('jax', 'jnp'):
            if not JAX_AVAILABLE:
                raise ValueError("JAX backend requested but JAX is not available (set PY_BACKEND=jax and install jax).")
            self.name, self.np, self.scipy = 'jax', jnp, jsp
        elif name in ('numpy', 'np'):
            self.name, self.np, self.scipy = 'numpy', np, sp
        else:
            raise ValueError(f"Unknown backend: {name}")

    def get_backend_modules(self, backend_spec: Union[str, Any, None] = None, use_scipy: bool = False) -> Union[Any, Tuple[Any, Any]]:
        '''
        Resolve a backend specifier to its modules.

        Args:
            backend_spec:
                'numpy', 'np', 'jax', 'jnp', 'default', None, or a module (np / jnp).
            use_scipy:
                If True, return a (numpy-like, scipy-like) tuple.
        '''
        if backend_spec is None or (isinstance(backend_spec, str) and backend_spec.lower() == 'default'):
            main, scipy_mod = self.np, self.scipy
        elif backend_spec is np or (isinstance(backend_spec, str) and backend_spec.lower() in ('numpy', 'np')):
            main, scipy_mod = np, sp
        elif (JAX_AVAILABLE and backend_spec is jnp) or (isinstance(backend_spec, str) and backend_spec.lower() in ('jax', 'jnp')):
            if not JAX_AVAILABLE:
                raise ValueError("JAX backend requested but JAX is not available (set PY_BACKEND=jax and install jax).")
            main, scipy_mod = jnp, jsp
        else:
            raise ValueError(f"Unknown backend specifier: {backend_spec}")
        return (main, scipy_mod) if use_scipy else main

backend_mgr = BackendManager()

# ---------------------------------------------------------------------
#! Global methods
# ---------------------------------------------------------------------

def get_backend(backend_spec: Union[str, Any, None] = None, scipy: bool = False) -> Union[Any, Tuple[Any, Any]]:
    """
    Return backend modules based on the provided specifier.

    Parameters
    ----------
    backend_spec : str or module or None, optional
        Backend specifier ("numpy", "jax", `np`, `jnp`, "default", None).
        Defaults to the globally active backend.
    scipy : bool, optional
        If True, also return the associated SciPy module.

    Returns
    -------
    module or tuple
        The numpy-like module, or (numpy-like, scipy-like) when `scipy=True`.

    >>> import pyminres.algebra.utils as abu
    >>> xp, xsp = abu.get_backend("numpy", scipy=True)
    """
    return backend_mgr.get_backend_modules(backend_spec, use_scipy=scipy)

def is_jax_array(x: Any) -> bool:
    '''
    Checks if an object is a JAX array (including traced values).
    '''
    if not JAX_AVAILABLE:
        return False
    return isinstance(x, jax.Array)

def is_jax_module(backend_module: Any) -> bool:
    ''' True when `backend_module` is jax.numpy. '''
    return JAX_AVAILABLE and backend_module is jnp

# ---------------------------------------------------------------------
#! Types
# ---------------------------------------------------------------------

def real_dtype(dtype: Any) -> np.dtype:
    '''
    Real counterpart of a dtype (complex128 -> float64, int -> default float).
    '''
    dt = np.dtype(dtype)
    if np.issubdtype(dt, np.complexfloating):
        return np.finfo(dt).dtype
    if np.issubdtype(dt, np.floating):
        return dt
    return np.dtype(DEFAULT_NP_FLOAT_TYPE)

def machine_epsilon(dtype: Any = None) -> float:
    '''
    Machine epsilon of the working precision of `dtype`.
    Integer and missing dtypes fall back to the default float type.
    '''
    if dtype is None:
        dtype = DEFAULT_NP_FLOAT_TYPE
    return float(np.finfo(real_dtype(dtype)).eps)

def working_dtype(*arrays: Any) -> np.dtype:
    '''
    Floating dtype able to hold every input (integers are promoted).
    '''
    dt = np.result_type(*[np.asarray(a).dtype if not hasattr(a, 'dtype') else a.dtype for a in arrays])
    if np.issubdtype(dt, np.complexfloating) or np.issubdtype(dt, np.floating):
        return np.dtype(dt)
    return np.dtype(DEFAULT_NP_FLOAT_TYPE)

# ---------------------------------------------------------------------
#! EOF
# ---------------------------------------------------------------------
