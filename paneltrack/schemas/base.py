"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models MUST inherit from
BaseResponseSchema.
"""
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM rows.

    Usage:
        class PanelResponse(BaseResponseSchema):
            id: UUID
            barcode: Optional[str] = None
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Unknown fields are rejected so a typo in a request body never turns
    into a silently ignored correction.
    """
    model_config = ConfigDict(
        extra='forbid',
    )
