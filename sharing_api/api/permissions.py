"""Permission grant API: direct grants and revocation."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_auth
from ..database import get_db
from ..schemas.sharing import GrantCreate, GrantResponse
from ..services import PermissionService

router = APIRouter(prefix="/api/permissions", tags=["permissions"])


@router.post("/grant", response_model=GrantResponse, status_code=201)
def grant_access(
    data: GrantCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Grant permissions directly. Replaces the grantee's existing set."""
    grant = PermissionService(db).grant_access(
        data.resource_type, data.resource_id, data.grantee, data.permissions, auth
    )
    return GrantResponse.model_validate(grant)


@router.delete("/{grant_id}", status_code=204)
def revoke_access(
    grant_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Revoke a grant. Resource owner only, unless delegated revocation is enabled."""
    PermissionService(db).revoke_access(grant_id, auth)
    return Response(status_code=204)
