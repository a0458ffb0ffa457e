"""Domain-agnostic primitives: structured errors, the Result envelope and logging.

Layers::

    errors.py     DeployError hierarchy (category, stage, exit code)
    result.py     Ok / Err envelope for expected failures
    logging.py    structlog configuration, LogContext
"""

from insight360.core.errors import DeployError, ErrorCategory, exit_code_for
from insight360.core.result import Err, Ok, Result

__all__ = [
    "DeployError",
    "Err",
    "ErrorCategory",
    "Ok",
    "Result",
    "exit_code_for",
]
