"""
Threaded responses to posts.

Responses are stored flat, each with an optional parent on the same post.
get_responses() assembles them into reply trees; deleting a response removes
its whole subtree.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from griva.community import MODERATION_ROLES, get_community_role
from griva.errors import GrivaError, NotAuthenticatedError, NotAuthorizedError, NotFoundError
from griva.models import Post, Response
from griva.schemas import ResponseThread

logger = logging.getLogger(__name__)


def create_response(
    db: Session,
    post_id: str,
    user_id: Optional[str],
    content: str,
    parent_response_id: Optional[str] = None,
) -> Response:
    """Reply to a post, or to another response on the same post when parent_response_id is given."""
    if not user_id:
        raise NotAuthenticatedError()
    if not (content or "").strip():
        raise GrivaError("Response cannot be empty")
    if db.get(Post, post_id) is None:
        raise NotFoundError("Post not found")

    if parent_response_id:
        parent = db.get(Response, parent_response_id)
        if parent is None or parent.post_id != post_id:
            raise NotFoundError("Parent response not found")

    response = Response(
        post_id=post_id,
        author_id=user_id,
        content=content,
        parent_response_id=parent_response_id or None,
    )
    db.add(response)
    db.commit()
    logger.info(f"[Responses] {user_id} replied to post {post_id}")
    return response


def get_responses(db: Session, post_id: str) -> List[ResponseThread]:
    """
    The post's responses as reply trees, oldest first at every level.
    A response whose parent is missing is returned as a root.
    """
    rows = list(db.scalars(
        select(Response)
        .where(Response.post_id == post_id)
        .order_by(Response.created_at.asc(), Response.id)
    ))

    nodes: Dict[str, ResponseThread] = {row.id: ResponseThread.model_validate(row) for row in rows}
    roots: List[ResponseThread] = []
    for row in rows:
        parent = nodes.get(row.parent_response_id) if row.parent_response_id else None
        if parent is not None:
            parent.replies.append(nodes[row.id])
        else:
            roots.append(nodes[row.id])
    return roots


def _subtree_ids(db: Session, root: Response) -> List[str]:
    children = defaultdict(list)
    for response_id, parent_id in db.execute(
        select(Response.id, Response.parent_response_id).where(Response.post_id == root.post_id)
    ):
        children[parent_id].append(response_id)

    ids, stack = [], [root.id]
    while stack:
        current = stack.pop()
        ids.append(current)
        stack.extend(children[current])
    return ids


def delete_response(db: Session, response_id: str, user_id: Optional[str]) -> int:
    """
    Delete a response and every reply beneath it. Allowed for its author and for
    the community's admins and moderators. Returns the number of responses removed.
    """
    if not user_id:
        raise NotAuthenticatedError()

    response = db.get(Response, response_id)
    if response is None:
        raise NotFoundError("Response not found")

    if response.author_id != user_id:
        post = db.get(Post, response.post_id)
        if get_community_role(db, post.community_id, user_id) not in MODERATION_ROLES:
            raise NotAuthorizedError()

    ids = _subtree_ids(db, response)
    db.execute(delete(Response).where(Response.id.in_(ids)))
    db.commit()
    logger.info(f"[Responses] {len(ids)} removed under {response_id} by {user_id}")
    return len(ids)
