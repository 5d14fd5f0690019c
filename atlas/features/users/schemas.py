"""
Pydantic schemas for the acting principal.
"""
from pydantic import BaseModel, ConfigDict


class Principal(BaseModel):
    """The identity a request acts as: a user id and its single role."""
    id: str
    role_id: str | None = None

    model_config = ConfigDict(frozen=True)
