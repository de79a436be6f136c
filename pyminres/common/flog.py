'''
Console and file logging for the pyminres package.

The solver layer talks to one process-wide `Logger` (see `get_global_logger`).
Messages carry an indentation level, so nested steps of a solve (setup,
preconditioner, result summary) read as a tree on the console:

    [INFO] [MINRES] Finished: info=SUCCESS, iterations=12, ...
    [DEBUG]     ->[Jacobi Preconditioner] Setting up with sigma=0.0 ...

Environment variables:
    PYMINRES_LOGLEVEL   : initial level name ('debug', 'info', 'warning', 'error')
    PYLOGFILE           : non-zero value enables the file handler (./log/<name>.log)
    PYLOGCOLORS         : '0' disables ANSI colours on the console

-------------------------------------------------------
file        :   pyminres/common/flog.py
description :   Logger with indentation and colour control used by the solvers.
-------------------------------------------------------
'''

__all__         = [
    "Logger",
    "Colors",
    "get_global_logger"
]

import os
import re
import sys
import logging
import threading
from datetime import datetime
from typing import Optional, Union

######################################################
#! COLOURS
######################################################

class Colors:
    """
    ANSI colour codes understood by `Logger.colorize`.
    """
    RESET   = "\033[0m"
    CODES   = {
        "black"     : "\033[30m",
        "red"       : "\033[31m",
        "green"     : "\033[32m",
        "yellow"    : "\033[33m",
        "blue"      : "\033[34m",
        "magenta"   : "\033[35m",
        "cyan"      : "\033[36m",
    }

    @classmethod
    def code(cls, name: Optional[str]) -> str:
        ''' Escape sequence for a colour name ('' for unknown names and white). '''
        if not name:
            return ""
        return cls.CODES.get(name.lower(), "")

_ANSI_RE = re.compile(r'\x1b\[[0-9;]*m')

class _PlainFormatter(logging.Formatter):
    ''' Drops colour codes; log files stay readable. '''
    def format(self, record):
        return _ANSI_RE.sub('', super().format(record))

######################################################
#! LOGGER
######################################################

ENV_LOGGER_LEVEL    = 'PYMINRES_LOGLEVEL'
ENV_LOGGER_FILE     = 'PYLOGFILE'
ENV_LOGGER_COLORS   = 'PYLOGCOLORS'

_DATE_FMT           = "%d_%m_%Y_%H-%M-%S"

class Logger:
    """
    Thin layer over `logging.Logger` with indentation levels, colours and
    a verbosity switch per call.
    """

    LEVELS = {
        logging.DEBUG   : 'debug',
        logging.INFO    : 'info',
        logging.WARNING : 'warning',
        logging.ERROR   : 'error'
    }

    LEVELS_R = {v: k for k, v in LEVELS.items()}

    def __init__(self,
                name            : str               = "pyminres",
                lvl             : Union[int, str]   = logging.INFO,
                logfile         : Optional[str]     = None,
                use_ts_in_cmd   : bool              = False):
        """
        Args:
            name (str):
                Name of the underlying `logging` logger.
            lvl (int | str):
                Threshold level, numeric or its name.
            logfile (str, optional):
                Base name of the log file; only used when PYLOGFILE is set.
            use_ts_in_cmd (bool):
                Prefix console lines with a timestamp.
        """
        self.started        = datetime.now()
        self.colors         = sys.stdout.isatty() and os.environ.get(ENV_LOGGER_COLORS, '1') != '0'
        self.logfile        : Optional[str] = None

        self._logger        = logging.getLogger(name)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        fmt                 = '%(asctime)s [%(levelname)s] %(message)s' if use_ts_in_cmd else '[%(levelname)s] %(message)s'
        console             = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(fmt, datefmt=_DATE_FMT))
        self._logger.addHandler(console)
        self.set_level(lvl)

        if os.environ.get(ENV_LOGGER_FILE, '0') != '0':
            self.add_file(logfile or f"{name}_{self.started.strftime(_DATE_FMT)}")

    # --------------------------------------------------------------

    @staticmethod
    def to_level(log: Union[int, str]) -> int:
        ''' Numeric level from a level or its name; unknown names map to DEBUG. '''
        if isinstance(log, str):
            return Logger.LEVELS_R.get(log.lower(), logging.DEBUG)
        return int(log)

    def set_level(self, lvl: Union[int, str]):
        ''' Change the threshold of the logger and all its handlers. '''
        self.lvl = self.to_level(lvl)
        self._logger.setLevel(self.lvl)
        for handler in self._logger.handlers:
            handler.setLevel(self.lvl)

    def add_file(self, basename: str, directory: str = "./log"):
        """
        Attach a file handler writing to `directory/basename.log`.
        Calling it again is a no-op.
        """
        if self.logfile is not None:
            return
        os.makedirs(directory, exist_ok=True)
        if basename.endswith('.log'):
            basename = basename[:-len('.log')]
        self.logfile = os.path.join(directory, f"{basename}.log")

        fh = logging.FileHandler(self.logfile, encoding='utf-8')
        fh.setLevel(self.lvl)
        fh.setFormatter(_PlainFormatter('%(asctime)s [%(levelname)s] %(message)s', datefmt=_DATE_FMT))
        self._logger.addHandler(fh)
        self.say(f"Log file: {self.logfile}", log=logging.INFO)

    # --------------------------------------------------------------

    @staticmethod
    def colorize(txt: str, color: Optional[str]) -> str:
        """
        Wrap the text in the colour escape sequence (unchanged for None / unknown colours).
        """
        code = Colors.code(color)
        return f"{code}{txt}{Colors.RESET}" if code else str(txt)

    @staticmethod
    def indent(lvl: int = 0) -> str:
        return '\t' * lvl + ('->' if lvl > 0 else '')

    def say(self, *args, end=True, log=logging.INFO, lvl=0, verbose=True, color=None):
        """
        Log the messages (one per line if `end`, else space separated).

        Args:
            *args           : Messages.
            log (int | str) : Level, numeric or its name.
            lvl (int)       : Indentation level.
            verbose (bool)  : Nothing is logged when False.
            color (str)     : Colour applied when the console supports it.
        """
        level = self.to_level(log)
        if not verbose or level < self.lvl:
            return
        text = ('\n' if end else ' ').join(str(a) for a in args)
        if color is not None and self.colors:
            text = self.colorize(text, color)
        self._logger.log(level, f"{self.indent(lvl)}{text}")

    def info(self, msg: str, lvl=0, verbose=True, color=None):
        self.say(msg, log=logging.INFO, lvl=lvl, verbose=verbose, color=color)

    def debug(self, msg: str, lvl=0, verbose=True, color=None):
        self.say(msg, log=logging.DEBUG, lvl=lvl, verbose=verbose, color=color)

    def warning(self, msg: str, lvl=0, verbose=True, color='yellow'):
        self.say(msg, log=logging.WARNING, lvl=lvl, verbose=verbose, color=color)

    def error(self, msg: str, lvl=0, verbose=True, color='red'):
        self.say(msg, log=logging.ERROR, lvl=lvl, verbose=verbose, color=color)

######################################################

_G_LOGGER     = None
_G_LOGGER_PID = None
_G_LOCK       = threading.Lock()

def get_global_logger(**kwargs) -> Logger:
    """
    The Logger of the current process. A forked child gets its own instance.

    Keyword arguments are used only when the instance is created:
        name, lvl (default: PYMINRES_LOGLEVEL or 'info'), logfile, use_ts_in_cmd.

    Example
    -------
        >>> logger = get_global_logger()
        >>> logger.info("Solver configured.")
    """
    global  _G_LOGGER, _G_LOGGER_PID
    pid     = os.getpid()

    with _G_LOCK:
        if _G_LOGGER is None or _G_LOGGER_PID != pid:
            kwargs.setdefault("lvl", os.environ.get(ENV_LOGGER_LEVEL, "info"))
            _G_LOGGER       = Logger(**kwargs)
            _G_LOGGER_PID   = pid
        return _G_LOGGER

######################################################
#! EOF
######################################################
