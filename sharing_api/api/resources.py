"""Resource API: registration, collaborators and effective permissions.

The owning system registers each shareable resource once. Other services
ask ``/permissions`` before serving a resource; a ``shareToken`` query
parameter (or ``X-Share-Token`` header) redeems a share link on the way,
which is how links in e-mails and chat messages open a resource directly.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, optional_auth, require_auth
from ..database import get_db
from ..exceptions import AuthenticationError
from ..schemas.sharing import (
    AuditEntryResponse,
    EffectivePermissionsResponse,
    GrantResponse,
    ResourceCreate,
    ResourceResponse,
)
from ..services import LinkService, PermissionService, audit_service, policy

router = APIRouter(prefix="/api/resources", tags=["resources"])


@router.post("", response_model=ResourceResponse, status_code=201)
def register_resource(
    data: ResourceCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Register a resource with the caller as owner. Idempotent for the same owner."""
    resource = PermissionService(db).register_resource(
        data.resource_type, data.resource_id, auth, data.title
    )
    return ResourceResponse.model_validate(resource)


@router.get("/{resource_type}/{resource_id}/collaborators", response_model=List[GrantResponse])
def list_collaborators(
    resource_type: str,
    resource_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Everyone holding a grant on the resource. Requires 'view' or 'share'."""
    grants = PermissionService(db).list_collaborators(resource_type, resource_id, auth)
    return [GrantResponse.model_validate(g) for g in grants]


@router.get("/{resource_type}/{resource_id}/permissions", response_model=EffectivePermissionsResponse)
def get_effective_permissions(
    resource_type: str,
    resource_id: str,
    share_token: Optional[str] = Query(None, alias="shareToken"),
    x_share_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    auth: Optional[AuthContext] = Depends(optional_auth),
):
    """The caller's permissions on a resource, optionally redeeming a share link first.

    A share token counts one access against its link. Anonymous callers
    get the link's permissions for this request only.
    """
    service = PermissionService(db)
    service.get_resource(resource_type, resource_id)

    token = share_token or x_share_token
    if auth is None and not token:
        raise AuthenticationError("Authentication or a share token is required")

    granted: List[str] = []
    if token:
        granted = LinkService(db).redeem_link(token, auth, resource_type, resource_id).permissions

    held: List[str] = []
    is_owner = False
    if auth is not None:
        held = service.effective_permissions(resource_type, resource_id, auth.identities)
        is_owner = service.is_owner(resource_type, resource_id, auth.identities)

    return EffectivePermissionsResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        permissions=policy.union_permissions([granted, held]),
        is_owner=is_owner,
    )


@router.get("/{resource_type}/{resource_id}/activity", response_model=List[AuditEntryResponse])
def get_activity(
    resource_type: str,
    resource_id: str,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Sharing history of a resource (invites, links, grants). Owner only."""
    entries = PermissionService(db).resource_activity(resource_type, resource_id, auth, limit=limit)
    return [
        AuditEntryResponse(
            id=e.id,
            actor=e.user_id,
            action=e.action,
            details=audit_service.decode_details(e),
            created_at=e.created_at,
        )
        for e in entries
    ]
