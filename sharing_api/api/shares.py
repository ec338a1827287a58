"""Sharing API: invitations and share links.

Invitation and link tokens are bearer credentials. Endpoints that take a
token in the path are public (or optionally authenticated) and rate
limited more tightly by the request context middleware.

E-mails are handed to FastAPI background tasks after the response is
computed, so a slow or failing mail service never delays or fails the
request.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, optional_auth, require_auth
from ..core.config import settings
from ..database import get_db
from ..models.user import User
from ..schemas.sharing import (
    AcceptInviteResponse,
    DeclineInviteResponse,
    GrantResponse,
    InviteCreate,
    InvitePreview,
    InviteResponse,
    LinkCreate,
    LinkPublicResponse,
    LinkResponse,
    RedeemResponse,
)
from ..services import InviteService, LinkService, identity_service, policy
from ..services.notification_service import (
    EmailDispatcher,
    build_accepted_message,
    build_invite_message,
    get_email_dispatcher,
    notify,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/share", tags=["sharing"])


# -- Invitations ----------------------------------------------------------

@router.post("/invite", response_model=InviteResponse, status_code=201)
def create_invite(
    data: InviteCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    """Invite someone by e-mail. Requires 'share' on the resource."""
    service = InviteService(db)
    invite = service.create_invite(
        auth,
        data.resource_type,
        data.resource_id,
        data.invitee_email,
        data.permissions,
        data.expires_in_days,
    )
    response = InviteResponse.from_invite(invite, policy.INVITE_PENDING)

    resource = service.permissions.get_resource(invite.resource_type, invite.resource_id)
    message = build_invite_message(
        invitee_email=invite.invitee_email,
        inviter_name=auth.display_name or identity_service.display_name_for(db, auth.user_id),
        resource_type=invite.resource_type,
        resource_title=resource.title,
        permissions=response.permissions,
        token=invite.token,
        expires_at_iso=response.expires_at.isoformat(),
        public_base_url=settings.public_base_url,
    )
    background_tasks.add_task(notify, dispatcher, message)
    return response


@router.get("/invite/{token}", response_model=InvitePreview)
def get_invite(token: str, db: Session = Depends(get_db)):
    """Preview an invitation (resource, permissions, effective status)."""
    return InviteService(db).get_invite(token)


@router.post("/accept/{token}", response_model=AcceptInviteResponse)
def accept_invite(
    token: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    """Accept an invitation. Accepting again returns the existing grant."""
    service = InviteService(db)
    result = service.accept_invite(token, auth)
    invite = result.invite

    if result.newly_accepted:
        inviter = db.get(User, invite.inviter_user_id)
        if inviter is not None and inviter.email:
            resource = service.permissions.resource_repo.get_optional(
                invite.resource_type, invite.resource_id
            )
            message = build_accepted_message(
                inviter_email=inviter.email,
                accepter=auth.display_name or auth.email or auth.user_id,
                resource_type=invite.resource_type,
                resource_title=resource.title if resource else None,
            )
            background_tasks.add_task(notify, dispatcher, message)

    return AcceptInviteResponse(
        invite=InviteResponse.from_invite(invite, invite.status),
        grant=GrantResponse.model_validate(result.grant),
    )


@router.post("/decline/{token}", response_model=DeclineInviteResponse)
def decline_invite(
    token: str,
    db: Session = Depends(get_db),
    auth: Optional[AuthContext] = Depends(optional_auth),
):
    """Decline an invitation. The token alone is sufficient."""
    invite = InviteService(db).decline_invite(token, auth)
    return DeclineInviteResponse(invite=InviteResponse.from_invite(invite, invite.status, include_token=False))


@router.get("/sent-invites", response_model=List[InviteResponse])
def list_sent_invites(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Invitations the caller has sent, newest first."""
    return InviteService(db).list_sent_invites(auth)


@router.get("/invites", response_model=List[InviteResponse])
def list_received_invites(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Invitations addressed to the caller's e-mail, newest first."""
    return InviteService(db).list_received_invites(auth)


# -- Share links ----------------------------------------------------------

@router.post("/link", response_model=LinkResponse, status_code=201)
def create_link(
    data: LinkCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Create a share link. Requires 'share' on the resource."""
    link = LinkService(db).create_link(
        auth,
        data.resource_type,
        data.resource_id,
        data.permissions,
        expires_in_days=data.expires_in_days,
        max_access_count=data.max_access_count,
    )
    return LinkResponse.from_link(link, usable=True)


@router.get("/link/{token}", response_model=LinkPublicResponse)
def get_link(token: str, db: Session = Depends(get_db)):
    """Public link metadata. Does not count as an access."""
    return LinkService(db).get_link(token)


@router.post("/link/{token}/redeem", response_model=RedeemResponse)
def redeem_link(
    token: str,
    db: Session = Depends(get_db),
    auth: Optional[AuthContext] = Depends(optional_auth),
):
    """Redeem a share link. Authenticated callers receive a persistent grant."""
    result = LinkService(db).redeem_link(token, auth)
    return RedeemResponse(
        resource_type=result.link.resource_type,
        resource_id=result.link.resource_id,
        permissions=result.permissions,
        grant_id=result.grant.id if result.grant is not None else None,
    )


@router.get("/links", response_model=List[LinkResponse])
def list_my_links(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Links the caller created, across all resources."""
    return LinkService(db).list_links(auth)


@router.get("/links/{resource_type}/{resource_id}", response_model=List[LinkResponse])
def list_resource_links(
    resource_type: str,
    resource_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """All links on a resource. Requires 'share'."""
    return LinkService(db).list_links(auth, resource_type, resource_id)


@router.delete("/link/{link_id}", response_model=LinkResponse)
def revoke_link(
    link_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Revoke a link (creator or resource owner). Revoking twice is harmless."""
    link = LinkService(db).revoke_link(link_id, auth)
    return LinkResponse.from_link(link, usable=False)
