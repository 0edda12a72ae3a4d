"""
Tests for the credential store: registration, verification and lookups.
"""

import pytest
from sqlalchemy import func, select

from forum.errors import DuplicateEntry, InvalidCredentials, NotFound
from forum.models import User


@pytest.mark.asyncio
async def test_register_returns_id_and_stores_hash(forum_ctx, session_factory):
    """Test registering a user stores a bcrypt hash, never the password."""
    user_id = await forum_ctx.credentials.register("alice", "alice@example.com", "password123")

    assert isinstance(user_id, int)
    async with session_factory() as session:
        user = (await session.execute(select(User).where(User.id == user_id))).scalars().one()
    assert user.hashed_password != "password123"
    assert user.hashed_password.startswith("$2")


@pytest.mark.asyncio
async def test_register_normalizes_name_and_email(forum_ctx):
    """Test names and emails are stored lowercased."""
    user_id = await forum_ctx.credentials.register("Alice", "Alice@Example.COM", "password123")

    user = await forum_ctx.credentials.get_user(user_id)
    assert user.name == "alice"
    assert user.email == "alice@example.com"


@pytest.mark.asyncio
async def test_register_duplicate_email(forum_ctx, session_factory, user_factory):
    """Test an email already on file is rejected, whatever its case, and nothing is written."""
    await user_factory("alice", "alice@example.com")

    with pytest.raises(DuplicateEntry):
        await forum_ctx.credentials.register("other", "ALICE@example.com", "password123")

    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(User)) == 1


@pytest.mark.asyncio
async def test_register_duplicate_name(forum_ctx, user_factory):
    """Test a name already on file is rejected case-insensitively."""
    await user_factory("alice", "alice@example.com")

    with pytest.raises(DuplicateEntry):
        await forum_ctx.credentials.register("ALICE", "new@example.com", "password123")


@pytest.mark.asyncio
async def test_verify_success(forum_ctx):
    """Test a correct email/password pair yields the user id."""
    user_id = await forum_ctx.credentials.register("alice", "alice@example.com", "password123")

    assert await forum_ctx.credentials.verify("alice@example.com", "password123") == user_id
    assert await forum_ctx.credentials.verify("  ALICE@example.com ", "password123") == user_id


@pytest.mark.asyncio
async def test_verify_wrong_password_and_unknown_email_look_the_same(forum_ctx, user_factory):
    """Test both failure modes raise the same error with the same message."""
    await user_factory("alice", "alice@example.com")

    with pytest.raises(InvalidCredentials) as wrong_password:
        await forum_ctx.credentials.verify("alice@example.com", "not-the-password")
    with pytest.raises(InvalidCredentials) as unknown_email:
        await forum_ctx.credentials.verify("nobody@example.com", "password123")

    assert str(wrong_password.value) == str(unknown_email.value) == "Email or password is incorrect"


@pytest.mark.asyncio
async def test_display_name_by_email(forum_ctx, user_factory):
    await user_factory("alice", "alice@example.com")

    assert await forum_ctx.credentials.display_name_by_email("Alice@Example.com") == "alice"

    with pytest.raises(NotFound):
        await forum_ctx.credentials.display_name_by_email("nobody@example.com")


@pytest.mark.asyncio
async def test_get_user_not_found(forum_ctx):
    with pytest.raises(NotFound):
        await forum_ctx.credentials.get_user(999999)
