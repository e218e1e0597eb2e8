import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from griva.config import get_settings
from griva.database import dialect_insert
from griva.errors import GrivaError, NotAuthenticatedError, NotAuthorizedError, NotFoundError
from griva.interactions import interaction_counts_query
from griva.models import (
    Community,
    CommunityBan,
    CommunityMember,
    Post,
    PostInteraction,
    PostReport,
    Response,
    new_id,
    utcnow,
)
from griva.ranking import compute_hot_score, rank_by_hot_score

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"
ROLE_MEMBER = "member"

# Roles allowed to remove other members' posts, ban users and read reports
MODERATION_ROLES = {ROLE_ADMIN, ROLE_MODERATOR}
# Roles an admin can assign
ASSIGNABLE_ROLES = {ROLE_MODERATOR, ROLE_MEMBER}

POSTS_LIMIT = 50
COMMUNITIES_LIMIT = 50
SEARCH_LIMIT = 30

# Newest posts considered for the hot listing; older ones have decayed out of it
HOT_CANDIDATE_LIMIT = 200


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise NotAuthenticatedError()
    return user_id


def _get_community(db: Session, community_id: str) -> Community:
    community = db.get(Community, community_id)
    if community is None:
        raise NotFoundError("Community not found")
    return community


# ---------------------------------------------------------------------------
# Communities & membership
# ---------------------------------------------------------------------------

def create_community(
    db: Session,
    user_id: Optional[str],
    name: str,
    slug: str,
    description: Optional[str] = None,
) -> Community:
    """Create a community; the creator becomes its admin."""
    user_id = _require_user(user_id)

    community = Community(name=name, slug=slug, description=description, created_by=user_id)
    db.add(community)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise GrivaError(f"Slug '{slug}' is already taken")

    db.add(CommunityMember(community_id=community.id, user_id=user_id, role=ROLE_ADMIN))
    db.commit()
    logger.info(f"[Community] {user_id} created '{slug}'")
    return community


def _member_count():
    return (
        select(func.count(CommunityMember.id))
        .where(CommunityMember.community_id == Community.id)
        .correlate(Community)
        .scalar_subquery()
        .label("member_count")
    )


def get_communities(db: Session, sort: str = "new", limit: int = COMMUNITIES_LIMIT) -> List[Tuple[Community, int]]:
    """
    Communities with their member counts.

    sort="new" lists the most recently created first; sort="popular" orders by member count.
    """
    member_count = _member_count()
    query = select(Community, member_count).limit(limit)
    if sort == "popular":
        query = query.order_by(member_count.desc(), Community.created_at.desc())
    else:
        query = query.order_by(Community.created_at.desc())
    return [(community, count) for community, count in db.execute(query)]


def get_community_by_slug(db: Session, slug: str) -> Tuple[Community, int]:
    row = db.execute(select(Community, _member_count()).where(Community.slug == slug)).first()
    if row is None:
        raise NotFoundError("Community not found")
    return row[0], row[1]


def search_communities(db: Session, text: str, limit: int = SEARCH_LIMIT) -> List[Tuple[Community, int]]:
    """Case-insensitive substring match on name or description, most members first."""
    text = (text or "").strip()
    if not text:
        return []

    member_count = _member_count()
    query = (
        select(Community, member_count)
        .where(or_(
            Community.name.icontains(text, autoescape=True),
            Community.description.icontains(text, autoescape=True),
        ))
        .order_by(member_count.desc(), Community.name)
        .limit(limit)
    )
    return [(community, count) for community, count in db.execute(query)]


def get_community_role(db: Session, community_id: str, user_id: Optional[str]) -> Optional[str]:
    if not user_id:
        return None
    return db.scalar(
        select(CommunityMember.role).where(
            CommunityMember.community_id == community_id,
            CommunityMember.user_id == user_id,
        )
    )


def join_community(db: Session, community_id: str, user_id: Optional[str]) -> str:
    """Join as a member. Returns the user's role (unchanged if already a member)."""
    user_id = _require_user(user_id)
    _get_community(db, community_id)

    if is_banned(db, community_id, user_id):
        raise NotAuthorizedError("You are banned from this community")

    role = get_community_role(db, community_id, user_id)
    if role:
        return role

    db.add(CommunityMember(community_id=community_id, user_id=user_id, role=ROLE_MEMBER))
    db.commit()
    return ROLE_MEMBER


def leave_community(db: Session, community_id: str, user_id: Optional[str]) -> None:
    user_id = _require_user(user_id)
    db.execute(
        delete(CommunityMember).where(
            CommunityMember.community_id == community_id,
            CommunityMember.user_id == user_id,
        )
    )
    db.commit()


def list_members(db: Session, community_id: str) -> List[CommunityMember]:
    """Members of a community, most recently joined first."""
    _get_community(db, community_id)
    return list(db.scalars(
        select(CommunityMember)
        .where(CommunityMember.community_id == community_id)
        .order_by(CommunityMember.joined_at.desc(), CommunityMember.id.desc())
    ))


def _get_member(db: Session, community_id: str, user_id: str) -> CommunityMember:
    member = db.scalar(
        select(CommunityMember).where(
            CommunityMember.community_id == community_id,
            CommunityMember.user_id == user_id,
        )
    )
    if member is None:
        raise NotFoundError("Member not found")
    return member


def promote_member(db: Session, community_id: str, actor_id: Optional[str], user_id: str, role: str) -> CommunityMember:
    """
    Set a member's role to moderator or member. Only the community's admins may do this,
    and an admin's own role cannot be changed this way.
    """
    actor_id = _require_user(actor_id)
    _get_community(db, community_id)

    if get_community_role(db, community_id, actor_id) != ROLE_ADMIN:
        raise NotAuthorizedError("Only admins can promote members")
    if role not in ASSIGNABLE_ROLES:
        raise GrivaError(f"Invalid role '{role}'")

    member = _get_member(db, community_id, user_id)
    if member.role == ROLE_ADMIN:
        raise NotAuthorizedError("Admins cannot be demoted")

    member.role = role
    db.commit()
    logger.info(f"[Community] {actor_id} set {user_id} to {role} in {community_id}")
    return member


# ---------------------------------------------------------------------------
# Bans
# ---------------------------------------------------------------------------

def is_banned(db: Session, community_id: str, user_id: Optional[str]) -> bool:
    if not user_id:
        return False
    return db.scalar(
        select(CommunityBan.id).where(
            CommunityBan.community_id == community_id,
            CommunityBan.user_id == user_id,
        )
    ) is not None


def _require_moderator(db: Session, community_id: str, actor_id: Optional[str]) -> Tuple[str, str]:
    actor_id = _require_user(actor_id)
    _get_community(db, community_id)
    role = get_community_role(db, community_id, actor_id)
    if role not in MODERATION_ROLES:
        raise NotAuthorizedError()
    return actor_id, role


def ban_user(
    db: Session,
    community_id: str,
    actor_id: Optional[str],
    user_id: str,
    reason: Optional[str] = None,
) -> None:
    """
    Remove a user from the community and keep them from rejoining.
    Admins and moderators may ban; only admins may ban a moderator, and admins cannot be banned.
    Banning an already-banned user replaces the reason.
    """
    actor_id, actor_role = _require_moderator(db, community_id, actor_id)
    if user_id == actor_id:
        raise GrivaError("You cannot ban yourself")

    target_role = get_community_role(db, community_id, user_id)
    if target_role == ROLE_ADMIN:
        raise NotAuthorizedError("Admins cannot be banned")
    if target_role == ROLE_MODERATOR and actor_role != ROLE_ADMIN:
        raise NotAuthorizedError("Only admins can ban moderators")

    db.execute(
        delete(CommunityMember).where(
            CommunityMember.community_id == community_id,
            CommunityMember.user_id == user_id,
        )
    )
    stmt = dialect_insert(db, CommunityBan).values(
        id=new_id(),
        community_id=community_id,
        user_id=user_id,
        banned_by=actor_id,
        reason=reason,
        created_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["community_id", "user_id"],
        set_={"banned_by": stmt.excluded.banned_by, "reason": stmt.excluded.reason},
    )
    db.execute(stmt)
    db.commit()
    logger.info(f"[Community] {actor_id} banned {user_id} from {community_id}")


def unban_user(db: Session, community_id: str, actor_id: Optional[str], user_id: str) -> None:
    actor_id, _ = _require_moderator(db, community_id, actor_id)
    db.execute(
        delete(CommunityBan).where(
            CommunityBan.community_id == community_id,
            CommunityBan.user_id == user_id,
        )
    )
    db.commit()
    logger.info(f"[Community] {actor_id} unbanned {user_id} from {community_id}")


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

def create_post(
    db: Session,
    community_id: str,
    user_id: Optional[str],
    title: str,
    content: Optional[str] = None,
) -> Post:
    user_id = _require_user(user_id)
    _get_community(db, community_id)

    post = Post(community_id=community_id, author_id=user_id, title=title, content=content)
    db.add(post)
    db.commit()
    return post


def get_posts(db: Session, community_id: Optional[str] = None) -> List[Post]:
    """Newest posts first, optionally restricted to one community."""
    query = select(Post).order_by(Post.created_at.desc()).limit(POSTS_LIMIT)
    if community_id:
        query = query.where(Post.community_id == community_id)
    return list(db.scalars(query))


def get_hot_posts(db: Session, community_id: Optional[str] = None) -> List[Tuple[Post, int, int, float]]:
    """
    Posts ranked by hot score. Only the newest HOT_CANDIDATE_LIMIT posts are
    loaded and scored.

    Returns:
        (post, positive_count, negative_count, hot_score) tuples, hottest first
    """
    settings = get_settings()

    candidates = select(Post).order_by(Post.created_at.desc()).limit(HOT_CANDIDATE_LIMIT)
    if community_id:
        candidates = candidates.where(Post.community_id == community_id)
    candidates = candidates.subquery()
    candidate = aliased(Post, candidates)

    counts = (
        interaction_counts_query()
        .where(PostInteraction.post_id.in_(select(candidates.c.id)))
        .subquery()
    )
    query = (
        select(candidate, counts.c.positive, counts.c.negative)
        .outerjoin(counts, counts.c.post_id == candidate.id)
    )

    scored = []
    for post, positive, negative in db.execute(query):
        positive, negative = int(positive or 0), int(negative or 0)
        score = compute_hot_score(
            positive, negative, post.created_at,
            offset=settings.hot_decay_offset,
            exponent=settings.hot_decay_exponent,
        )
        scored.append((post, positive, negative, score))

    return rank_by_hot_score(scored, score=lambda entry: entry[3])[:POSTS_LIMIT]


def delete_post(db: Session, post_id: str, user_id: Optional[str]) -> None:
    """Delete a post. Allowed for its author and for the community's admins and moderators."""
    user_id = _require_user(user_id)

    post = db.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")

    if post.author_id != user_id:
        role = get_community_role(db, post.community_id, user_id)
        if role not in MODERATION_ROLES:
            raise NotAuthorizedError()

    db.execute(delete(PostInteraction).where(PostInteraction.post_id == post_id))
    db.execute(delete(PostReport).where(PostReport.post_id == post_id))
    db.execute(delete(Response).where(Response.post_id == post_id))
    db.delete(post)
    db.commit()
    logger.info(f"[Community] post {post_id} deleted by {user_id}")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def report_post(db: Session, post_id: str, user_id: Optional[str], reason: str) -> PostReport:
    """Flag a post for the community's moderators. Reporting the same post again updates the reason."""
    user_id = _require_user(user_id)
    reason = (reason or "").strip()
    if not reason:
        raise GrivaError("A reason is required")
    if db.get(Post, post_id) is None:
        raise NotFoundError("Post not found")

    stmt = dialect_insert(db, PostReport).values(
        id=new_id(),
        post_id=post_id,
        reported_by=user_id,
        reason=reason,
        created_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["post_id", "reported_by"],
        set_={"reason": stmt.excluded.reason},
    ).returning(PostReport.id)

    report_id = db.execute(stmt).scalar_one()
    db.commit()
    logger.info(f"[Community] post {post_id} reported by {user_id}")
    return db.get(PostReport, report_id)


def get_post_reports(db: Session, community_id: str, user_id: Optional[str]) -> List[PostReport]:
    """Reports on a community's posts, newest first. Admins and moderators only."""
    _require_moderator(db, community_id, user_id)
    return list(db.scalars(
        select(PostReport)
        .join(Post, Post.id == PostReport.post_id)
        .where(Post.community_id == community_id)
        .order_by(PostReport.created_at.desc())
    ))
