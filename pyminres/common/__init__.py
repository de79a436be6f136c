"""
Common utilities shared by the pyminres subpackages.

Currently this is the logging layer:
- Logger            : console/file logger with indentation and colours
- get_global_logger : process-wide Logger instance

Example:
    >>> from pyminres.common import get_global_logger
    >>> logger = get_global_logger()
    >>> logger.info("hello")
"""

import  importlib
from    typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .flog import Logger, Colors, get_global_logger

_LAZY_IMPORTS = {
    'Logger'            : ('.flog', 'Logger'),
    'Colors'            : ('.flog', 'Colors'),
    'get_global_logger' : ('.flog', 'get_global_logger'),
    'flog'              : ('.flog', None),
}

_LAZY_CACHE = {}

def __getattr__(name: str):
    if name in _LAZY_CACHE:
        return _LAZY_CACHE[name]
    if name not in _LAZY_IMPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_path, attr_name  = _LAZY_IMPORTS[name]
    module                  = importlib.import_module(module_path, package=__name__)
    result                  = module if attr_name is None else getattr(module, attr_name)
    _LAZY_CACHE[name]       = result
    return result

def __dir__():
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = list(_LAZY_IMPORTS.keys())
