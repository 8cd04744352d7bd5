"""
Domain package for the cptx data layer.

Exports the value objects handed back to callers of the query executor.
"""

from cptx.domain.models import ExecResult

__all__ = [
    "ExecResult",
]
