"""Common schemas used across the API."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for API bodies: camelCase on the wire, snake_case also accepted."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PaginationParams(BaseModel):
    """Pagination query parameters."""

    offset: int = Field(default=0, ge=0, description="Number of items to skip")
    limit: int = Field(default=20, ge=1, le=100, description="Number of items to return")


class PaginatedResponse[T](ApiModel):
    """Paginated response wrapper."""

    success: bool = True
    items: list[T]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class ErrorResponse(ApiModel):
    """Standard error response."""

    success: bool = False
    message: str
    code: str | None = None


class SuccessResponse(ApiModel):
    """Standard success response."""

    success: bool = True
    message: str
