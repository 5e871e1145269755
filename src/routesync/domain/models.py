from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]
PolicyLocation = Literal["inbound", "backend", "outbound", "on-error"]

POLICY_LOCATIONS: tuple[str, ...] = ("inbound", "backend", "outbound", "on-error")


class _CamelModel(BaseModel):
    # ARM payloads are camelCase; python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TemplateParameter(_CamelModel):
    name: str
    required: bool = True
    type: str = "string"


class EndpointDescriptor(_CamelModel):
    """
    Canonical endpoint produced by route extraction.

    url_template uses {param} placeholders, method is upper-case.
    """

    operation_id: str
    method: HttpMethod
    url_template: str
    display_name: str
    template_parameters: list[TemplateParameter] = Field(default_factory=list)
    description: Optional[str] = None
    request: Optional[dict[str, Any]] = None
    responses: Optional[list[dict[str, Any]]] = None
    tags: list[str] = Field(default_factory=list)
    policies: dict[PolicyLocation, list[str]] = Field(default_factory=dict)

    def operation_body(self) -> dict[str, Any]:
        """Body for a create-or-update operation call (policies and tags excluded)."""
        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"operation_id", "tags", "policies"},
        )


class EndpointOverrides(_CamelModel):
    """Partial descriptor: only the fields explicitly set are applied."""

    operation_id: Optional[str] = None
    method: Optional[HttpMethod] = None
    url_template: Optional[str] = None
    display_name: Optional[str] = None
    template_parameters: Optional[list[TemplateParameter]] = None
    description: Optional[str] = None
    request: Optional[dict[str, Any]] = None
    responses: Optional[list[dict[str, Any]]] = None
    tags: Optional[list[str]] = None
    policies: dict[PolicyLocation, list[str]] = Field(default_factory=dict)


class RemoteOperation(_CamelModel):
    id: str
    name: str
    url_template: str
    method: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    request: Optional[dict[str, Any]] = None
    responses: Optional[list[dict[str, Any]]] = None
    template_parameters: list[TemplateParameter] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class Tag(_CamelModel):
    name: str           # tag id in the registry
    display_name: str


class OperationTagLink(BaseModel):
    """One (operation, tag) pair from the operations-by-tags listing."""

    operation_name: str
    tag_display_name: str


class ApiInfo(_CamelModel):
    id: str             # full resource id
    name: str           # api id, may carry ";rev=N"
    display_name: Optional[str] = None
    path: Optional[str] = None
    api_version: Optional[str] = None
    api_revision: Optional[str] = None
    is_current: Optional[bool] = None


class ApiRevision(_CamelModel):
    api_id: str
    api_revision: str
    is_current: Optional[bool] = None
