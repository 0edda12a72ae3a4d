"""
Unit tests for business logic (services layer).
Runs service functions against the test database; the cache is mocked.
"""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, patch
from fastapi import HTTPException

from forum import services
from forum.cache import make_cache_key, USER_PROFILE_PREFIX
from forum.errors import NotFound
from forum.reactions import Stance, TargetKind
from forum.schemas import PostCreate, UserLogin, UserRegister
from forum.sessions import SessionIdentity


def _identity(user_id: int, name: str) -> SessionIdentity:
    return SessionIdentity(token="t", user_id=user_id, user_name=name, expires_at=datetime.now(timezone.utc))


@pytest.mark.asyncio
class TestAccounts:
    """Test signup and login services."""

    async def test_register_user(self, forum_ctx):
        user = await services.register_user(
            forum_ctx, UserRegister(name="Alice", email="Alice@example.com", password="password123")
        )

        assert user.name == "alice"
        assert user.email == "alice@example.com"

    async def test_register_duplicate_is_400(self, forum_ctx, user_factory):
        await user_factory("alice", "alice@example.com")

        with pytest.raises(HTTPException) as exc_info:
            await services.register_user(
                forum_ctx, UserRegister(name="other", email="alice@example.com", password="password123")
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error"] == "DUPLICATE_ENTRY"

    async def test_login_user_opens_session(self, forum_ctx, user_factory):
        user_id = await user_factory("alice", "alice@example.com")

        token, body = await services.login_user(
            forum_ctx, UserLogin(email="alice@example.com", password="password123")
        )

        assert body.user_id == user_id
        assert body.name == "alice"
        identity = await forum_ctx.sessions.resolve_session(token)
        assert identity.user_id == user_id

    async def test_login_user_bad_password_is_401(self, forum_ctx, user_factory):
        await user_factory("alice", "alice@example.com")

        with pytest.raises(HTTPException) as exc_info:
            await services.login_user(forum_ctx, UserLogin(email="alice@example.com", password="wrong-pass"))

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail["message"] == "Email or password is incorrect"

    async def test_logout_user(self, forum_ctx, user_factory):
        user_id = await user_factory("alice")
        token, _ = await forum_ctx.sessions.create_session(user_id, "alice")

        await services.logout_user(forum_ctx, _identity(user_id, "alice"))

        assert await forum_ctx.sessions.resolve_session(token) is None


@pytest.mark.asyncio
class TestUserProfile:
    """Test profile lookups and the cache path."""

    async def test_profile_from_database(self, forum_ctx, user_factory):
        user_id = await user_factory("alice")

        profile = await services.get_user_profile(forum_ctx, user_id)

        assert profile.id == user_id
        assert profile.name == "alice"

    async def test_profile_missing(self, forum_ctx):
        with pytest.raises(NotFound):
            await services.get_user_profile(forum_ctx, 12345)

    async def test_profile_served_from_cache(self, forum_ctx, monkeypatch):
        """Test a cache hit never touches the database."""
        monkeypatch.setattr(forum_ctx.settings, "CACHE_ENABLED", True)
        cached = {"id": 7, "name": "cached", "created": "2026-01-01T00:00:00Z"}

        with patch("forum.services.cache_manager.get", new_callable=AsyncMock, return_value=cached) as get:
            profile = await services.get_user_profile(forum_ctx, 7)

        get.assert_awaited_once_with(make_cache_key(USER_PROFILE_PREFIX, 7))
        assert profile.name == "cached"

    async def test_profile_cached_after_miss(self, forum_ctx, user_factory, monkeypatch):
        monkeypatch.setattr(forum_ctx.settings, "CACHE_ENABLED", True)
        user_id = await user_factory("alice")

        with patch("forum.services.cache_manager.get", new_callable=AsyncMock, return_value=None), \
                patch("forum.services.cache_manager.set", new_callable=AsyncMock, return_value=True) as cache_set:
            await services.get_user_profile(forum_ctx, user_id)

        key, value = cache_set.await_args.args
        assert key == f"forum:user:{user_id}"
        assert value["name"] == "alice"
        assert isinstance(value["created"], str)
        assert "email" not in value

    async def test_own_account_includes_email(self, forum_ctx, user_factory):
        user_id = await user_factory("alice", "alice@example.com")

        account = await services.get_own_account(forum_ctx, _identity(user_id, "alice"))

        assert account.id == user_id
        assert account.email == "alice@example.com"


@pytest.mark.asyncio
class TestPostsAndComments:
    """Test post creation, post view and comment validation."""

    async def test_create_post(self, forum_ctx, user_factory):
        user_id = await user_factory("alice")
        data = PostCreate(title="Hi", content="Body", categories=["Travel", "Technology"])

        post = await services.create_post(forum_ctx, _identity(user_id, "alice"), data)

        assert post.author == "alice"
        assert post.categories == ["Technology", "Travel"]

    async def test_view_post_includes_viewer_stance(self, forum_ctx, user_factory, post_factory):
        user_id = await user_factory("alice")
        post_id = await post_factory(user_id, "alice")
        comment_id = await forum_ctx.posts.add_comment(post_id, user_id, "alice", "hello")
        await forum_ctx.reactions.like(user_id, TargetKind.POST, post_id)
        await forum_ctx.reactions.dislike(user_id, TargetKind.COMMENT, comment_id)

        view = await services.view_post(forum_ctx, post_id, _identity(user_id, "alice"))

        assert view.is_authenticated is True
        assert view.post.viewer_stance == "like"
        assert view.post.likes == 1
        assert view.comments[0].viewer_stance == "dislike"
        assert view.comments[0].dislikes == 1

    async def test_view_post_anonymous(self, forum_ctx, user_factory, post_factory):
        user_id = await user_factory("alice")
        post_id = await post_factory(user_id, "alice")
        await forum_ctx.reactions.like(user_id, TargetKind.POST, post_id)

        view = await services.view_post(forum_ctx, post_id, None)

        assert view.is_authenticated is False
        assert view.post.viewer_stance is None
        assert view.post.likes == 1

    async def test_add_comment_rejected_keeps_draft(self, forum_ctx, user_factory, post_factory):
        """Test a rejected comment stores nothing and returns the draft with the reason."""
        user_id = await user_factory("alice")
        post_id = await post_factory(user_id, "alice")
        draft = "x" * 301

        view = await services.add_comment(forum_ctx, _identity(user_id, "alice"), post_id, draft)

        assert view is not None
        assert view.comment_error == "Comment cannot be longer than 300 characters"
        assert view.comment_draft == draft
        assert view.comments == []

    async def test_add_comment_accepted(self, forum_ctx, user_factory, post_factory):
        user_id = await user_factory("alice")
        post_id = await post_factory(user_id, "alice")

        assert await services.add_comment(forum_ctx, _identity(user_id, "alice"), post_id, "hello") is None
        assert len(await forum_ctx.posts.comments_for(post_id)) == 1


@pytest.mark.asyncio
class TestFeedAndReactions:

    async def test_feed_filters(self, forum_ctx, user_factory, post_factory):
        alice = await user_factory("alice")
        bob = await user_factory("bob")
        alices = await post_factory(alice, "alice", categories=["Health"])
        bobs = await post_factory(bob, "bob", categories=["Travel"])
        await forum_ctx.reactions.like(alice, TargetKind.POST, bobs)
        viewer = _identity(alice, "alice")

        latest = await services.feed(forum_ctx, viewer)
        created = await services.feed(forum_ctx, viewer, "created")
        liked = await services.feed(forum_ctx, viewer, "liked")
        travel = await services.feed(forum_ctx, None, "latest", ["Travel"])

        assert latest.total == 2
        assert [p.id for p in created.items] == [alices]
        assert [p.id for p in liked.items] == [bobs]
        assert [p.id for p in travel.items] == [bobs]
        assert travel.is_authenticated is False

    async def test_unknown_feed_filter_falls_back_to_latest(self, forum_ctx):
        result = await services.feed(forum_ctx, None, "bogus")
        assert result.filter == "latest"

    async def test_react(self, forum_ctx, user_factory, post_factory):
        user_id = await user_factory("alice")
        post_id = await post_factory(user_id, "alice")

        state = await services.react(forum_ctx, _identity(user_id, "alice"), TargetKind.POST, post_id, like=True)
        assert state.stance == Stance.LIKE

        state = await services.react(forum_ctx, _identity(user_id, "alice"), TargetKind.POST, post_id, like=False)
        assert state.stance == Stance.DISLIKE
        assert (state.likes, state.dislikes) == (0, 1)
