"""
Domain models for the cptx data layer.

Value objects returned to callers of the query executor.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ExecResult(BaseModel):
    """
    Outcome of a non-row-returning statement.
    """

    rowcount: int = Field(..., description="Rows affected, or -1 when the driver cannot tell.")
    status: Optional[str] = Field(None, description="Command status tag, e.g. 'INSERT 0 1'.")

    model_config = {
        "frozen": True,
    }

    @property
    def rows_affected(self) -> int:
        return self.rowcount


__all__ = ["ExecResult"]
