"""Explicit access context passed through every engine call."""

from dataclasses import dataclass

from skillgraph.core.visibility import VisibilityFilter, build_filter


class MissingTenantError(ValueError):
    """Raised when an access context is built without a tenant."""


@dataclass(frozen=True)
class AccessContext:
    """Tenant and principal on whose behalf an operation runs.

    Attributes:
        tenant_id: Tenant whose catalog is being read
        principal_id: Authenticated member, or None for anonymous access
    """

    tenant_id: str
    principal_id: str | None = None

    def __post_init__(self) -> None:
        if not self.tenant_id or not str(self.tenant_id).strip():
            raise MissingTenantError("AccessContext requires a tenant_id")

    @property
    def visibility(self) -> VisibilityFilter:
        return build_filter(self.principal_id)

    def log_fields(self) -> dict[str, str | None]:
        return {"tenant_id": self.tenant_id, "principal_id": self.principal_id}
