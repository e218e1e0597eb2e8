import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from griva.database import dialect_insert
from griva.errors import NotAuthenticatedError, NotFoundError
from griva.models import Post, PostInteraction, new_id, utcnow

logger = logging.getLogger(__name__)


class Direction(IntEnum):
    NEGATIVE = -1   # challenge / downvote
    NONE = 0
    POSITIVE = 1    # insight / upvote


def next_direction(current: Direction, selected: Direction) -> Direction:
    """
    Interaction transitions for one user on one post:
        NONE --select(d)--> d
        d    --select(d)--> NONE     (toggle off)
        d    --select(o)--> o        (flip)
    """
    if selected == Direction.NONE:
        raise ValueError("Only POSITIVE or NEGATIVE can be selected")
    return Direction.NONE if current == selected else selected


@dataclass(frozen=True)
class InteractionState:
    positive: int
    negative: int
    mine: Direction = Direction.NONE

    @property
    def net(self) -> int:
        return self.positive - self.negative


def with_direction(state: InteractionState, new: Direction) -> InteractionState:
    """Move the user's own direction to `new`, adjusting both counters in the same step."""
    positive, negative = state.positive, state.negative

    if state.mine == Direction.POSITIVE:
        positive -= 1
    elif state.mine == Direction.NEGATIVE:
        negative -= 1

    if new == Direction.POSITIVE:
        positive += 1
    elif new == Direction.NEGATIVE:
        negative += 1

    return InteractionState(positive=max(0, positive), negative=max(0, negative), mine=new)


def apply_selection(state: InteractionState, selected: Direction) -> InteractionState:
    return with_direction(state, next_direction(state.mine, selected))


class OptimisticInteraction:
    """
    Client-side reducer for an interaction control.

    predict() applies the transition immediately and remembers the state it
    replaced. confirm() settles on the server's answer; reject() restores the
    remembered state.
    """

    def __init__(self, state: InteractionState):
        self.state = state
        self._snapshot: Optional[InteractionState] = None

    @property
    def pending(self) -> bool:
        return self._snapshot is not None

    def predict(self, selected: Direction) -> InteractionState:
        if self._snapshot is None:
            self._snapshot = self.state
        self.state = apply_selection(self.state, selected)
        return self.state

    def confirm(self, direction: Direction) -> InteractionState:
        """Settle on the direction the server stored, adjusting counters if the prediction was wrong."""
        if self._snapshot is not None and self.state.mine != direction:
            self.state = with_direction(self._snapshot, Direction(direction))
        self._snapshot = None
        return self.state

    def reject(self) -> InteractionState:
        if self._snapshot is not None:
            self.state = self._snapshot
            self._snapshot = None
        return self.state


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def interact_post(db: Session, post_id: str, user_id: Optional[str], direction: Direction) -> Direction:
    """
    Toggle the user's interaction on a post and return the resulting direction.

    The read-and-write happens in one conditional upsert keyed on
    (post_id, user_id), so repeated requests from the same user cannot
    double-count.
    """
    if not user_id:
        raise NotAuthenticatedError()
    direction = Direction(direction)
    if direction == Direction.NONE:
        raise ValueError("Only POSITIVE or NEGATIVE can be selected")
    if db.get(Post, post_id) is None:
        raise NotFoundError("Post not found")

    stmt = dialect_insert(db, PostInteraction).values(
        id=new_id(),
        post_id=post_id,
        user_id=user_id,
        direction=int(direction),
        updated_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["post_id", "user_id"],
        set_={
            "direction": case(
                (PostInteraction.direction == stmt.excluded.direction, Direction.NONE.value),
                else_=stmt.excluded.direction,
            ),
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(PostInteraction.direction)

    stored = db.execute(stmt).scalar_one()
    db.commit()

    logger.info(f"[Interactions] user={user_id} post={post_id} selected={direction.name} -> {Direction(stored).name}")
    return Direction(stored)


def get_interaction_status(db: Session, user_id: Optional[str], post_ids: List[str]) -> Dict[str, int]:
    """Map each post id to the user's direction (1, -1 or 0). Empty when there is no user."""
    if not user_id or not post_ids:
        return {}

    result = {post_id: 0 for post_id in post_ids}
    rows = db.execute(
        select(PostInteraction.post_id, PostInteraction.direction)
        .where(PostInteraction.user_id == user_id, PostInteraction.post_id.in_(post_ids))
    )
    for post_id, value in rows:
        result[post_id] = value
    return result


def interaction_counts_query():
    """Per-post positive/negative counts, usable as a subquery."""
    return (
        select(
            PostInteraction.post_id,
            func.sum(case((PostInteraction.direction == 1, 1), else_=0)).label("positive"),
            func.sum(case((PostInteraction.direction == -1, 1), else_=0)).label("negative"),
        )
        .group_by(PostInteraction.post_id)
    )


def get_post_interaction_counts(db: Session, post_id: str) -> Dict[str, int]:
    row = db.execute(
        interaction_counts_query().where(PostInteraction.post_id == post_id)
    ).first()
    positive = int(row.positive) if row else 0
    negative = int(row.negative) if row else 0
    return {"positive": positive, "negative": negative, "net": positive - negative}
