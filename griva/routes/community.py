import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from griva import community as service
from griva import responses
from griva.database import get_db
from griva.interactions import (
    Direction,
    get_interaction_status,
    get_post_interaction_counts,
    interact_post,
)
from griva.schemas import (
    BanCreate,
    CommunityCreate,
    CommunityResponse,
    CommunitySummary,
    InteractionCounts,
    InteractionRequest,
    InteractionResponse,
    MemberResponse,
    PostCreate,
    PostResponse,
    RankedPostResponse,
    ReportCreate,
    ReportResponse,
    ResponseCreate,
    ResponseOut,
    ResponseThread,
    RoleUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """
    The acting user's id. Session issuance happens upstream; the gateway
    forwards the authenticated id in the X-User-Id header.
    """
    return x_user_id or None


def _summary(community, member_count: int) -> CommunitySummary:
    return CommunitySummary(
        **CommunityResponse.model_validate(community).model_dump(),
        member_count=member_count,
    )


@router.get("/communities", response_model=List[CommunitySummary])
def list_communities(
    q: Optional[str] = Query(default=None, max_length=100),
    sort: str = Query(default="new", pattern="^(new|popular)$"),
    db: Session = Depends(get_db),
):
    """All communities (newest or most members first), or a name/description search when q is given."""
    if q is not None:
        rows = service.search_communities(db, q)
    else:
        rows = service.get_communities(db, sort)
    return [_summary(community, count) for community, count in rows]


@router.get("/communities/{slug}", response_model=CommunitySummary)
def get_community(slug: str, db: Session = Depends(get_db)):
    return _summary(*service.get_community_by_slug(db, slug))


@router.post("/communities", response_model=CommunityResponse, status_code=201)
def create_community(
    body: CommunityCreate,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return service.create_community(db, user_id, body.name, body.slug, body.description)


@router.post("/communities/{community_id}/join")
def join_community(
    community_id: str,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    role = service.join_community(db, community_id, user_id)
    return {"community_id": community_id, "role": role}


@router.post("/communities/{community_id}/leave", status_code=204)
def leave_community(
    community_id: str,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    service.leave_community(db, community_id, user_id)


@router.get("/communities/{community_id}/members", response_model=List[MemberResponse])
def list_members(community_id: str, db: Session = Depends(get_db)):
    return service.list_members(db, community_id)


@router.post("/communities/{community_id}/members/{member_id}/role", response_model=MemberResponse)
def set_member_role(
    community_id: str,
    member_id: str,
    body: RoleUpdate,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """Admins only: make a member a moderator, or return a moderator to member."""
    return service.promote_member(db, community_id, user_id, member_id, body.role)


@router.post("/communities/{community_id}/bans", status_code=204)
def ban_member(
    community_id: str,
    body: BanCreate,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    service.ban_user(db, community_id, user_id, body.user_id, body.reason)


@router.delete("/communities/{community_id}/bans/{member_id}", status_code=204)
def unban_member(
    community_id: str,
    member_id: str,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    service.unban_user(db, community_id, user_id, member_id)


@router.get("/communities/{community_id}/reports", response_model=List[ReportResponse])
def list_reports(
    community_id: str,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return service.get_post_reports(db, community_id, user_id)


@router.get("/communities/{community_id}/posts")
def list_posts(
    community_id: str,
    sort: str = Query(default="new", pattern="^(new|hot)$"),
    db: Session = Depends(get_db),
):
    """Posts in a community, newest first (sort=new) or by hot score (sort=hot)."""
    if sort == "hot":
        return [
            RankedPostResponse(
                **PostResponse.model_validate(post).model_dump(),
                positive_count=positive,
                negative_count=negative,
                hot_score=score,
            )
            for post, positive, negative, score in service.get_hot_posts(db, community_id)
        ]
    return [PostResponse.model_validate(post) for post in service.get_posts(db, community_id)]


@router.post("/communities/{community_id}/posts", response_model=PostResponse, status_code=201)
def create_post(
    community_id: str,
    body: PostCreate,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return service.create_post(db, community_id, user_id, body.title, body.content)


@router.delete("/posts/{post_id}", status_code=204)
def delete_post(
    post_id: str,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    service.delete_post(db, post_id, user_id)


@router.post("/posts/{post_id}/reports", response_model=ReportResponse, status_code=201)
def report_post(
    post_id: str,
    body: ReportCreate,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return service.report_post(db, post_id, user_id, body.reason)


@router.get("/posts/{post_id}/responses", response_model=List[ResponseThread])
def list_responses(post_id: str, db: Session = Depends(get_db)):
    """Threaded responses: top-level responses with their replies nested beneath them."""
    return responses.get_responses(db, post_id)


@router.post("/posts/{post_id}/responses", response_model=ResponseOut, status_code=201)
def create_response(
    post_id: str,
    body: ResponseCreate,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return responses.create_response(db, post_id, user_id, body.content, body.parent_response_id)


@router.delete("/responses/{response_id}", status_code=204)
def delete_response(
    response_id: str,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    responses.delete_response(db, response_id, user_id)


@router.post("/posts/{post_id}/interactions", response_model=InteractionResponse)
def interact(
    post_id: str,
    body: InteractionRequest,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """Select insight (1) or challenge (-1). Selecting the current direction again clears it."""
    direction = interact_post(db, post_id, user_id, Direction(body.direction))
    return InteractionResponse(post_id=post_id, direction=int(direction))


@router.get("/posts/{post_id}/interactions", response_model=InteractionCounts)
def interaction_counts(post_id: str, db: Session = Depends(get_db)):
    return get_post_interaction_counts(db, post_id)


@router.get("/interactions/status")
def interaction_status(
    post_ids: List[str] = Query(default=[]),
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """The caller's direction on each listed post: 1, -1, or 0 for none."""
    return get_interaction_status(db, user_id, post_ids)
