"""Organization settings endpoints.

- GET /system-settings/environment - Helpship environment in use
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from ordercore.api.middleware import require_organization
from ordercore.api.schemas import EnvironmentResponse, ErrorResponse
from ordercore.application.repositories import get_repositories
from ordercore.infrastructure.credentials import resolve_credentials

router = APIRouter(prefix="/system-settings", tags=["Settings"])


@router.get(
    "/environment",
    response_model=EnvironmentResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Get Helpship environment",
)
async def get_environment(
    organization_id: Annotated[str, Depends(require_organization)],
) -> EnvironmentResponse:
    """Report which Helpship deployment the organization talks to."""
    org_settings = await get_repositories().catalog.get_organization_settings(organization_id)
    credentials = resolve_credentials(organization_id, org_settings)
    return EnvironmentResponse(
        organization_id=organization_id,
        helpship_environment=credentials.environment.value,
        helpship_api_url=credentials.api_url,
        credentials_configured=credentials.is_configured,
    )
