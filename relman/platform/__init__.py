"""Process and filesystem adapters."""

from .files import md5_file
from .process import CommandRunner, ProcessError, run

__all__ = ["CommandRunner", "ProcessError", "md5_file", "run"]
