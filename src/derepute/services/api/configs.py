"""Configuration for the read-only registry API.

The API reuses ``interval`` from
[BaseServiceConfig][derepute.core.base_service.BaseServiceConfig] as the
period between request-statistics cycles; the HTTP server itself runs
continuously beside those cycles.
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator

from derepute.core.base_service import BaseServiceConfig


class ApiConfig(BaseServiceConfig):
    """HTTP surface and paging limits for [Api][derepute.services.api.Api].

    Page sizes bound how many relay records a single response may carry:
    ``max_page_size`` clamps any client ``limit``, ``default_page_size`` is
    served when ``limit`` is omitted, and ``search_page_size`` is the chunk
    size of the server-side search sweep.
    """

    interval: float = Field(default=60.0, ge=1.0, description="Seconds between stats cycles")
    host: str = Field(default="0.0.0.0", min_length=1, description="Listen address")  # noqa: S104
    port: int = Field(default=8080, ge=1, le=65535, description="Listen port")
    route_prefix: str = Field(
        default="/v1", min_length=1, description="Prefix for the /relays and /search routes"
    )
    max_page_size: int = Field(default=500, ge=1, le=10_000, description="Largest page served")
    default_page_size: int = Field(default=50, ge=1, le=10_000, description="Page size if unset")
    search_page_size: int = Field(default=50, ge=1, le=10_000, description="Search sweep page")
    cors_origins: list[str] = Field(
        default_factory=list, description="Origins allowed by CORS (empty disables CORS)"
    )

    @field_validator("route_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        segments = [part for part in value.split("/") if part]
        if not segments:
            raise ValueError("route_prefix needs at least one path segment")
        return "/" + "/".join(segments)

    @model_validator(mode="after")
    def _check_default_page(self) -> ApiConfig:
        if self.default_page_size > self.max_page_size:
            raise ValueError(
                f"default_page_size={self.default_page_size} is larger than "
                f"max_page_size={self.max_page_size}"
            )
        return self
