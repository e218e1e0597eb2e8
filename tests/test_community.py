from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from griva.community import (
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_MODERATOR,
    ban_user,
    create_community,
    create_post,
    delete_post,
    get_communities,
    get_community_by_slug,
    get_community_role,
    get_hot_posts,
    get_post_reports,
    get_posts,
    is_banned,
    join_community,
    leave_community,
    list_members,
    promote_member,
    report_post,
    search_communities,
    unban_user,
)
from griva.config import Settings
from griva.errors import GrivaError, NotAuthenticatedError, NotAuthorizedError, NotFoundError
from griva.interactions import Direction, interact_post
from griva.models import CommunityBan, CommunityMember, Post, PostInteraction, PostReport, Response
from griva.responses import create_response


@pytest.fixture
def community(db):
    return create_community(db, "owner", "Machine Learning", "ml", "Papers and chat")


def backdate(db, post, hours):
    post.created_at = datetime.now(timezone.utc) - timedelta(hours=hours)
    db.commit()


# ---------------------------------------------------------------------------
# Communities & membership
# ---------------------------------------------------------------------------

class TestCreateCommunity:
    def test_creator_becomes_admin(self, db, community):
        assert community.slug == "ml"
        assert get_community_role(db, community.id, "owner") == ROLE_ADMIN

    def test_requires_user(self, db):
        with pytest.raises(NotAuthenticatedError):
            create_community(db, None, "Anonymous", "anon")

    def test_duplicate_slug(self, db, community):
        with pytest.raises(GrivaError, match="already taken"):
            create_community(db, "someone", "Another ML", "ml")


class TestMembership:
    def test_join_as_member(self, db, community):
        assert join_community(db, community.id, "alice") == ROLE_MEMBER
        assert get_community_role(db, community.id, "alice") == ROLE_MEMBER

    def test_join_is_idempotent(self, db, community):
        join_community(db, community.id, "alice")
        join_community(db, community.id, "alice")

        members = db.query(CommunityMember).filter_by(community_id=community.id, user_id="alice").count()
        assert members == 1

    def test_admin_rejoining_keeps_role(self, db, community):
        assert join_community(db, community.id, "owner") == ROLE_ADMIN

    def test_join_unknown_community(self, db):
        with pytest.raises(NotFoundError):
            join_community(db, "missing", "alice")

    def test_leave(self, db, community):
        join_community(db, community.id, "alice")
        leave_community(db, community.id, "alice")
        assert get_community_role(db, community.id, "alice") is None

    def test_anonymous_has_no_role(self, db, community):
        assert get_community_role(db, community.id, None) is None

    def test_list_members_newest_first(self, db, community):
        join_community(db, community.id, "alice")

        members = list_members(db, community.id)

        assert [(m.user_id, m.role) for m in members] == [("alice", ROLE_MEMBER), ("owner", ROLE_ADMIN)]

    def test_list_members_unknown_community(self, db):
        with pytest.raises(NotFoundError):
            list_members(db, "missing")


class TestCommunityReads:
    def test_newest_first_with_member_counts(self, db, community):
        other = create_community(db, "owner", "Robotics", "robotics", "Arms and legs")
        other.created_at = community.created_at + timedelta(hours=1)
        db.commit()
        join_community(db, community.id, "alice")
        join_community(db, community.id, "bob")

        rows = get_communities(db)

        assert [(c.slug, count) for c, count in rows] == [("robotics", 1), ("ml", 3)]

    def test_popular_orders_by_member_count(self, db, community):
        other = create_community(db, "owner", "Robotics", "robotics")
        for user in ("alice", "bob", "carol"):
            join_community(db, other.id, user)

        assert [c.slug for c, _ in get_communities(db, sort="popular")] == ["robotics", "ml"]

    def test_by_slug(self, db, community):
        join_community(db, community.id, "alice")

        found, member_count = get_community_by_slug(db, "ml")

        assert found.id == community.id
        assert member_count == 2

    def test_unknown_slug(self, db):
        with pytest.raises(NotFoundError):
            get_community_by_slug(db, "missing")

    def test_search_matches_name_or_description(self, db, community):
        create_community(db, "owner", "Robotics", "robotics", "Arms and legs")

        assert [c.slug for c, _ in search_communities(db, "MACHINE")] == ["ml"]
        assert [c.slug for c, _ in search_communities(db, "arms")] == ["robotics"]

    def test_blank_search_returns_nothing(self, db, community):
        assert search_communities(db, "   ") == []

    def test_search_treats_wildcards_literally(self, db, community):
        assert search_communities(db, "%") == []


class TestPromoteMember:
    def test_admin_promotes_and_demotes(self, db, community):
        join_community(db, community.id, "alice")

        member = promote_member(db, community.id, "owner", "alice", ROLE_MODERATOR)
        assert member.role == ROLE_MODERATOR

        promote_member(db, community.id, "owner", "alice", ROLE_MEMBER)
        assert get_community_role(db, community.id, "alice") == ROLE_MEMBER

    @pytest.mark.parametrize("actor_role", [ROLE_MODERATOR, ROLE_MEMBER])
    def test_only_admins_can_promote(self, db, community, actor_role):
        db.add(CommunityMember(community_id=community.id, user_id="actor", role=actor_role))
        db.commit()
        join_community(db, community.id, "alice")

        with pytest.raises(NotAuthorizedError, match="Only admins can promote members"):
            promote_member(db, community.id, "actor", "alice", ROLE_MODERATOR)
        assert get_community_role(db, community.id, "alice") == ROLE_MEMBER

    def test_outsider_cannot_promote(self, db, community):
        join_community(db, community.id, "alice")
        with pytest.raises(NotAuthorizedError):
            promote_member(db, community.id, "stranger", "alice", ROLE_MODERATOR)

    def test_admin_role_cannot_be_granted(self, db, community):
        join_community(db, community.id, "alice")
        with pytest.raises(GrivaError, match="Invalid role"):
            promote_member(db, community.id, "owner", "alice", ROLE_ADMIN)

    def test_admin_cannot_be_demoted(self, db, community):
        db.add(CommunityMember(community_id=community.id, user_id="co-owner", role=ROLE_ADMIN))
        db.commit()

        with pytest.raises(NotAuthorizedError):
            promote_member(db, community.id, "owner", "co-owner", ROLE_MEMBER)
        assert get_community_role(db, community.id, "co-owner") == ROLE_ADMIN

    def test_unknown_member(self, db, community):
        with pytest.raises(NotFoundError, match="Member not found"):
            promote_member(db, community.id, "owner", "nobody", ROLE_MODERATOR)

    def test_requires_user(self, db, community):
        with pytest.raises(NotAuthenticatedError):
            promote_member(db, community.id, None, "alice", ROLE_MODERATOR)


class TestBans:
    def test_ban_removes_membership_and_blocks_rejoin(self, db, community):
        join_community(db, community.id, "alice")

        ban_user(db, community.id, "owner", "alice", "spam")

        assert get_community_role(db, community.id, "alice") is None
        assert is_banned(db, community.id, "alice")
        with pytest.raises(NotAuthorizedError, match="You are banned from this community"):
            join_community(db, community.id, "alice")

    def test_unban_allows_rejoin(self, db, community):
        ban_user(db, community.id, "owner", "alice")
        unban_user(db, community.id, "owner", "alice")

        assert not is_banned(db, community.id, "alice")
        assert join_community(db, community.id, "alice") == ROLE_MEMBER

    def test_moderator_can_ban_member(self, db, community):
        db.add(CommunityMember(community_id=community.id, user_id="mod", role=ROLE_MODERATOR))
        db.commit()
        join_community(db, community.id, "alice")

        ban_user(db, community.id, "mod", "alice")

        assert is_banned(db, community.id, "alice")

    def test_member_cannot_ban(self, db, community):
        join_community(db, community.id, "alice")
        join_community(db, community.id, "bob")

        with pytest.raises(NotAuthorizedError):
            ban_user(db, community.id, "bob", "alice")
        assert not is_banned(db, community.id, "alice")
        assert get_community_role(db, community.id, "alice") == ROLE_MEMBER

    def test_member_cannot_unban(self, db, community):
        ban_user(db, community.id, "owner", "alice")
        join_community(db, community.id, "bob")

        with pytest.raises(NotAuthorizedError):
            unban_user(db, community.id, "bob", "alice")
        assert is_banned(db, community.id, "alice")

    def test_admin_cannot_be_banned(self, db, community):
        db.add(CommunityMember(community_id=community.id, user_id="mod", role=ROLE_MODERATOR))
        db.commit()

        with pytest.raises(NotAuthorizedError, match="Admins cannot be banned"):
            ban_user(db, community.id, "mod", "owner")
        assert get_community_role(db, community.id, "owner") == ROLE_ADMIN

    def test_only_admins_ban_moderators(self, db, community):
        db.add_all([
            CommunityMember(community_id=community.id, user_id="mod1", role=ROLE_MODERATOR),
            CommunityMember(community_id=community.id, user_id="mod2", role=ROLE_MODERATOR),
        ])
        db.commit()

        with pytest.raises(NotAuthorizedError):
            ban_user(db, community.id, "mod1", "mod2")
        ban_user(db, community.id, "owner", "mod2")
        assert is_banned(db, community.id, "mod2")

    def test_cannot_ban_self(self, db, community):
        db.add(CommunityMember(community_id=community.id, user_id="mod", role=ROLE_MODERATOR))
        db.commit()
        with pytest.raises(GrivaError, match="cannot ban yourself"):
            ban_user(db, community.id, "mod", "mod")

    def test_banning_twice_keeps_one_row_with_latest_reason(self, db, community):
        ban_user(db, community.id, "owner", "alice", "first")
        ban_user(db, community.id, "owner", "alice", "second")

        bans = db.query(CommunityBan).filter_by(community_id=community.id, user_id="alice").all()
        assert [b.reason for b in bans] == ["second"]

    def test_ban_is_per_community(self, db, community):
        other = create_community(db, "owner", "Robotics", "robotics")
        ban_user(db, community.id, "owner", "alice")

        assert join_community(db, other.id, "alice") == ROLE_MEMBER

    def test_anonymous_is_never_banned(self, db, community):
        assert is_banned(db, community.id, None) is False


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

class TestPosts:
    def test_create_and_list_newest_first(self, db, community):
        older = create_post(db, community.id, "alice", "First")
        backdate(db, older, 2)
        create_post(db, community.id, "bob", "Second", "body")

        titles = [p.title for p in get_posts(db, community.id)]

        assert titles == ["Second", "First"]

    def test_create_requires_user(self, db, community):
        with pytest.raises(NotAuthenticatedError):
            create_post(db, community.id, None, "Nope")

    def test_create_in_unknown_community(self, db):
        with pytest.raises(NotFoundError):
            create_post(db, "missing", "alice", "Lost")

    def test_list_is_scoped_to_community(self, db, community):
        other = create_community(db, "owner", "Robotics", "robotics")
        create_post(db, community.id, "alice", "ML post")
        create_post(db, other.id, "alice", "Robot post")

        assert [p.title for p in get_posts(db, other.id)] == ["Robot post"]
        assert len(get_posts(db)) == 2


class TestHotPosts:
    def test_ranked_by_interactions_and_age(self, db, community):
        popular = create_post(db, community.id, "alice", "Popular")
        quiet = create_post(db, community.id, "alice", "Quiet")
        disliked = create_post(db, community.id, "alice", "Disliked")
        for user in ("u1", "u2", "u3", "u4", "u5", "u6", "u7", "u8", "u9", "u10"):
            interact_post(db, popular.id, user, Direction.POSITIVE)
            interact_post(db, disliked.id, user, Direction.NEGATIVE)

        ranked = get_hot_posts(db, community.id)

        assert [post.title for post, *_ in ranked] == ["Popular", "Quiet", "Disliked"]
        post, positive, negative, score = ranked[0]
        assert (positive, negative) == (10, 0)
        assert score == pytest.approx(1.0, abs=0.01)
        assert quiet.id in [post.id for post, *_ in ranked]

    def test_cleared_interactions_do_not_count(self, db, community):
        post = create_post(db, community.id, "alice", "Toggled")
        interact_post(db, post.id, "bob", Direction.POSITIVE)
        interact_post(db, post.id, "bob", Direction.POSITIVE)

        _, positive, negative, _ = get_hot_posts(db, community.id)[0]

        assert (positive, negative) == (0, 0)

    def test_uses_configured_decay(self, db, community):
        post = create_post(db, community.id, "alice", "Aging")
        backdate(db, post, 10)

        default_score = get_hot_posts(db, community.id)[0][3]
        tuned = Settings(HOT_DECAY_OFFSET=10.0, HOT_DECAY_EXPONENT=2.0)
        with patch("griva.community.get_settings", return_value=tuned):
            tuned_score = get_hot_posts(db, community.id)[0][3]

        assert tuned_score != pytest.approx(default_score)

    def test_only_newest_posts_are_candidates(self, db, community):
        posts = [create_post(db, community.id, "alice", f"Post {i}") for i in range(5)]
        for hours, post in enumerate(reversed(posts)):
            backdate(db, post, hours)
        # the oldest post has the most interactions but falls outside the candidate window
        for user in ("u1", "u2", "u3", "u4", "u5"):
            interact_post(db, posts[0].id, user, Direction.POSITIVE)

        with patch("griva.community.HOT_CANDIDATE_LIMIT", 3):
            ranked = get_hot_posts(db, community.id)

        assert sorted(post.title for post, *_ in ranked) == ["Post 2", "Post 3", "Post 4"]

    def test_candidate_window_is_per_community(self, db, community):
        other = create_community(db, "owner", "Robotics", "robotics")
        mine = [create_post(db, community.id, "alice", f"Mine {i}") for i in range(2)]
        for post in mine:
            backdate(db, post, 5)
        for i in range(3):
            create_post(db, other.id, "bob", f"Theirs {i}")

        with patch("griva.community.HOT_CANDIDATE_LIMIT", 3):
            ranked = get_hot_posts(db, community.id)

        assert sorted(post.title for post, *_ in ranked) == ["Mine 0", "Mine 1"]


class TestDeletePost:
    def test_author_can_delete(self, db, community):
        post = create_post(db, community.id, "alice", "Mine")
        interact_post(db, post.id, "bob", Direction.POSITIVE)

        delete_post(db, post.id, "alice")

        assert db.get(Post, post.id) is None
        assert db.query(PostInteraction).filter_by(post_id=post.id).count() == 0

    def test_removes_responses_and_reports(self, db, community):
        post = create_post(db, community.id, "alice", "Busy thread")
        first = create_response(db, post.id, "bob", "Nice")
        create_response(db, post.id, "carol", "Agreed", first.id)
        report_post(db, post.id, "dave", "Spam")

        delete_post(db, post.id, "alice")

        assert db.query(Response).filter_by(post_id=post.id).count() == 0
        assert db.query(PostReport).filter_by(post_id=post.id).count() == 0

    @pytest.mark.parametrize("role", [ROLE_ADMIN, ROLE_MODERATOR])
    def test_moderation_roles_can_delete(self, db, community, role):
        db.add(CommunityMember(community_id=community.id, user_id="mod", role=role))
        db.commit()
        post = create_post(db, community.id, "alice", "Off-topic")

        delete_post(db, post.id, "mod")

        assert db.get(Post, post.id) is None

    def test_member_cannot_delete_others_post(self, db, community):
        join_community(db, community.id, "bob")
        post = create_post(db, community.id, "alice", "Not yours")

        with pytest.raises(NotAuthorizedError):
            delete_post(db, post.id, "bob")
        assert db.get(Post, post.id) is not None

    def test_unknown_post(self, db):
        with pytest.raises(NotFoundError):
            delete_post(db, "missing", "alice")

    def test_requires_user(self, db, community):
        post = create_post(db, community.id, "alice", "Post")
        with pytest.raises(NotAuthenticatedError):
            delete_post(db, post.id, None)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class TestReports:
    def test_report_is_visible_to_moderators(self, db, community):
        post = create_post(db, community.id, "alice", "Suspicious")

        report = report_post(db, post.id, "bob", "Spam")

        assert (report.post_id, report.reported_by, report.reason) == (post.id, "bob", "Spam")
        assert [r.id for r in get_post_reports(db, community.id, "owner")] == [report.id]

    def test_reporting_again_updates_reason(self, db, community):
        post = create_post(db, community.id, "alice", "Suspicious")
        first = report_post(db, post.id, "bob", "Spam")

        second = report_post(db, post.id, "bob", "Off-topic")

        assert second.id == first.id
        assert db.query(PostReport).filter_by(post_id=post.id).count() == 1
        assert second.reason == "Off-topic"

    def test_requires_reason(self, db, community):
        post = create_post(db, community.id, "alice", "Post")
        with pytest.raises(GrivaError, match="reason"):
            report_post(db, post.id, "bob", "   ")

    def test_unknown_post(self, db):
        with pytest.raises(NotFoundError):
            report_post(db, "missing", "bob", "Spam")

    def test_requires_user(self, db, community):
        post = create_post(db, community.id, "alice", "Post")
        with pytest.raises(NotAuthenticatedError):
            report_post(db, post.id, None, "Spam")

    def test_members_cannot_read_reports(self, db, community):
        join_community(db, community.id, "bob")
        with pytest.raises(NotAuthorizedError):
            get_post_reports(db, community.id, "bob")

    def test_reports_are_scoped_to_community(self, db, community):
        other = create_community(db, "owner", "Robotics", "robotics")
        report_post(db, create_post(db, other.id, "alice", "Elsewhere").id, "bob", "Spam")

        assert get_post_reports(db, community.id, "owner") == []
