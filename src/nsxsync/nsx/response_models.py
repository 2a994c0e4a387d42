"""Pydantic models for NSX Policy API responses.

Only the paths the synchronizer depends on are validated: search pages,
realized-state listings and error bodies.

Design Principles:
- Graceful degradation: extra="allow" for unknown fields
- Resources themselves stay plain dicts here and are turned into
  ``PolicyResource`` variants by ``resource_from_dict``

Usage:
    # Validate a search page
    page = SearchResponse.model_validate(response.json())
    items, cursor = page.results, page.cursor

    # Validate an error body
    error = ErrorResponse.model_validate(response.json())
    message = error.get_full_message()
"""

from typing import Any

from pydantic import BaseModel, Field


class SearchResponse(BaseModel):
    """Response from GET /policy/api/v1/search/query.

    Attributes:
        results: Matching resources (raw NSX bodies)
        cursor: Opaque cursor of the next page, absent on the last page
        result_count: Total number of matches across all pages
    """

    results: list[dict[str, Any]] = Field(default_factory=list)
    cursor: str | None = Field(None, description="Cursor of the next page")
    result_count: int | None = Field(None, ge=0)

    model_config = {"extra": "allow"}


class RealizedAttribute(BaseModel):
    key: str
    values: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class RealizedEntity(BaseModel):
    """One realized entity of an intent path.

    Attributes:
        entity_type: Realized type, e.g. "IpBlockSubnet"
        state: Realization state ("REALIZED", "UNREALIZED", ...)
        extended_attributes: Computed key/values (cidr, gateway_ip, ...)
    """

    entity_type: str | None = None
    state: str | None = None
    extended_attributes: list[RealizedAttribute] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def attribute(self, key: str) -> str | None:
        """First value of the extended attribute ``key``."""
        for attr in self.extended_attributes:
            if attr.key == key and attr.values:
                return attr.values[0]
        return None


class RealizedEntityList(BaseModel):
    results: list[RealizedEntity] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class RelatedError(BaseModel):
    error_code: int | None = None
    error_message: str | None = None
    module_name: str | None = None

    model_config = {"extra": "allow"}


class ErrorResponse(BaseModel):
    """Structured error response from the NSX API.

    A hierarchical PATCH reports the failure of a nested child in
    ``related_errors``, the top-level code is often generic.

    Attributes:
        error_code: Top level NSX error code
        error_message: Top level message
        module_name: NSX module raising the error
        related_errors: Errors of nested requests
    """

    error_code: int | None = None
    error_message: str | None = None
    module_name: str | None = None
    related_errors: list[RelatedError] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def get_message(self) -> str:
        return self.error_message or "Unknown error"

    def get_full_message(self) -> str:
        """Message with code and the first related error."""
        msg = self.get_message()
        if self.error_code is not None:
            msg += f" (Code: {self.error_code})"
        if self.related_errors:
            related = self.related_errors[0]
            detail = related.error_message or ""
            if len(detail) > 200:
                detail = detail[:197] + "..."
            msg += f" - {related.error_code}: {detail}"
        return msg

