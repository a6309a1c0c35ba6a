"""Base schemas for the application."""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema class with common configuration."""

    model_config = ConfigDict(from_attributes=True)


class ResponseSchema(BaseSchema):
    """Standard API response envelope used by task endpoints."""

    status: str
    message: str | None = None
    data: dict | None = None
