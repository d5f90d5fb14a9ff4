"""Unit tests for password reset tokens."""

import pytest

from authtokens.service.errors import MismatchError, NotFoundError, ValidationError
from authtokens.service.generators import TOKEN_ALPHABET
from authtokens.service.password_reset import PASSWORD_RESET_TOKEN_LENGTH


class TestPasswordResetCreate:
    """Tests for reset token issuance."""

    @pytest.mark.asyncio
    async def test_token_has_expected_shape(self, reset_manager):
        token = await reset_manager.create("user-1")

        assert len(token) == PASSWORD_RESET_TOKEN_LENGTH
        assert set(token) <= set(TOKEN_ALPHABET)

    @pytest.mark.asyncio
    async def test_token_stored_as_value(self, reset_manager, memory_store):
        token = await reset_manager.create("user-1")

        assert await memory_store.get("password_reset:user-1") == token
        assert memory_store.ttl_remaining("password_reset:user-1") == pytest.approx(600)

    @pytest.mark.asyncio
    async def test_new_token_replaces_previous(self, reset_manager):
        first = await reset_manager.create("user-1")
        second = await reset_manager.create("user-1")

        assert await reset_manager.verify("user-1", first) is False
        assert await reset_manager.verify("user-1", second) is True

    @pytest.mark.asyncio
    async def test_invalid_subject_rejected(self, reset_manager):
        with pytest.raises(ValidationError):
            await reset_manager.create("has space")


class TestPasswordResetVerify:
    """Tests for reset token verification."""

    @pytest.mark.asyncio
    async def test_verify_does_not_consume(self, reset_manager):
        token = await reset_manager.create("user-1")

        assert await reset_manager.verify("user-1", token) is True
        assert await reset_manager.verify("user-1", token) is True

    @pytest.mark.asyncio
    async def test_wrong_token_is_false(self, reset_manager):
        await reset_manager.create("user-1")

        assert await reset_manager.verify("user-1", "A" * PASSWORD_RESET_TOKEN_LENGTH) is False

    @pytest.mark.asyncio
    async def test_non_ascii_token_is_false(self, reset_manager):
        await reset_manager.create("user-1")

        assert await reset_manager.verify("user-1", "é" * 10) is False

    @pytest.mark.asyncio
    async def test_missing_token_is_false(self, reset_manager):
        assert await reset_manager.verify("user-1", "anything") is False

    @pytest.mark.asyncio
    async def test_expired_token_is_false(self, reset_manager, clock):
        token = await reset_manager.create("user-1")

        clock.advance(601)

        assert await reset_manager.verify("user-1", token) is False

    @pytest.mark.asyncio
    async def test_overlong_token_rejected(self, reset_manager):
        with pytest.raises(ValidationError):
            await reset_manager.verify("user-1", "x" * (PASSWORD_RESET_TOKEN_LENGTH + 1))


class TestPasswordResetRevoke:
    """Tests for reset token revocation."""

    @pytest.mark.asyncio
    async def test_revoke_with_matching_token(self, reset_manager):
        token = await reset_manager.create("user-1")

        await reset_manager.revoke("user-1", token)

        assert await reset_manager.verify("user-1", token) is False

    @pytest.mark.asyncio
    async def test_revoke_missing_raises_not_found(self, reset_manager):
        with pytest.raises(NotFoundError):
            await reset_manager.revoke("user-1", "whatever")

    @pytest.mark.asyncio
    async def test_revoke_with_wrong_token_keeps_live_token(self, reset_manager):
        token = await reset_manager.create("user-1")

        with pytest.raises(MismatchError):
            await reset_manager.revoke("user-1", "wrong-token")

        assert await reset_manager.verify("user-1", token) is True

    @pytest.mark.asyncio
    async def test_revoke_for_subject(self, reset_manager):
        token = await reset_manager.create("user-1")

        assert await reset_manager.revoke_for_subject("user-1") is True
        assert await reset_manager.revoke_for_subject("user-1") is False
        assert await reset_manager.verify("user-1", token) is False

    @pytest.mark.asyncio
    async def test_revoke_all(self, reset_manager, refresh_manager):
        await reset_manager.create("user-1")
        await reset_manager.create("user-2")
        refresh = await refresh_manager.create("user-1")

        assert await reset_manager.revoke_all() == 2
        assert await refresh_manager.verify("user-1", refresh) is True
