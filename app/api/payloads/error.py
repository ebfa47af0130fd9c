from pydantic import BaseModel


class APIError(BaseModel):
    """Error body rendered for every ``BaseError`` raised by a handler."""

    error: str
    error_description: str | None = None
    retry_after: int | None = None
