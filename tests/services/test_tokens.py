"""Token service tests."""

from datetime import timedelta

import pytest
from jose import jwt
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from usersvc.errors import AuthInvalid, WrongTokenType
from usersvc.models import RefreshToken, User, utcnow
from usersvc.services.tokens import TokenConfig, TokenService, build_access_claims

SECRET = "unit-test-secret-that-is-long-enough-to-use"


class MovableClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> MovableClock:
    return MovableClock()


@pytest.fixture
def tokens(session: AsyncSession, clock: MovableClock) -> TokenService:
    return TokenService(session, TokenConfig(secret=SECRET, bcrypt_rounds=4), clock=clock)


async def _records(session: AsyncSession, user_id: str) -> list[RefreshToken]:
    result = await session.execute(select(RefreshToken).where(RefreshToken.user_id == user_id))
    return list(result.scalars().all())


class TestAccessTokens:
    def test_sign_and_verify(self, tokens: TokenService, user: User):
        token = tokens.sign_access_token(build_access_claims(user, ["user", "doctor"]))
        claims = tokens.verify_access_token(token)

        assert claims["sub"] == user.id
        assert claims["email"] == user.email
        assert claims["phone"] == user.phone
        assert claims["roles"] == ["user", "doctor"]
        assert claims["type"] == "access"
        assert claims["exp"] - claims["iat"] == 24 * 60 * 60

    def test_claims_include_profile_snapshot(self, user: User):
        from usersvc.models import Profile

        profile = Profile(user_id=user.id, full_name="Abebe Kebede", profession="Doctor")
        claims = build_access_claims(user, ["user"], profile)
        assert claims["profile"]["fullName"] == "Abebe Kebede"
        assert claims["profile"]["verificationStatus"] == "none"

    def test_rejects_bad_signature(self, tokens: TokenService, user: User):
        forged = jwt.encode(
            {"sub": user.id, "type": "access"}, "some-other-secret-of-enough-length", "HS256"
        )
        with pytest.raises(AuthInvalid):
            tokens.verify_access_token(forged)

    def test_rejects_expired(self, tokens: TokenService, user: User, clock: MovableClock):
        clock.advance(days=-2)
        token = tokens.sign_access_token(build_access_claims(user))
        with pytest.raises(AuthInvalid):
            tokens.verify_access_token(token)

    def test_rejects_garbage(self, tokens: TokenService):
        with pytest.raises(AuthInvalid):
            tokens.verify_access_token("not-a-token")

    def test_rejects_other_token_types(self, tokens: TokenService, user: User):
        token = jwt.encode({"sub": user.id, "type": "refresh"}, SECRET, "HS256")
        with pytest.raises(AuthInvalid, match="type"):
            tokens.verify_access_token(token)


class TestParseRefreshToken:
    def test_parses_user_and_secret(self, tokens: TokenService):
        assert tokens.parse_refresh_token("user123.secretvalue") == ("user123", "secretvalue")

    @pytest.mark.parametrize("presented", ["", "nodot", ".secret", "user.", "a.b.c"])
    def test_rejects_malformed(self, tokens: TokenService, presented: str):
        with pytest.raises(AuthInvalid):
            tokens.parse_refresh_token(presented)

    def test_access_token_is_wrong_type(self, tokens: TokenService, user: User):
        access = tokens.sign_access_token(build_access_claims(user))
        with pytest.raises(WrongTokenType) as exc_info:
            tokens.parse_refresh_token(access)
        assert exc_info.value.status_code == 400


class TestRefreshTokens:
    @pytest.mark.asyncio
    async def test_issue_stores_only_hash(self, tokens: TokenService, session, user: User):
        issued = await tokens.issue_refresh_token(user.id, {"ip": "127.0.0.1"})

        assert len(issued.raw_token) >= 40
        assert issued.presented == f"{user.id}.{issued.raw_token}"

        [record] = await _records(session, user.id)
        assert record.hashed_token != issued.raw_token
        assert issued.raw_token not in record.hashed_token
        assert record.token_metadata == {"ip": "127.0.0.1"}
        assert record.revoked_at is None

    @pytest.mark.asyncio
    async def test_rotation_is_single_use(self, tokens: TokenService, session, user: User):
        issued = await tokens.issue_refresh_token(user.id)

        rotated = await tokens.rotate_refresh_token(issued.raw_token, user.id)
        assert rotated is not None
        assert rotated.raw_token != issued.raw_token

        old = await session.get(RefreshToken, issued.record.id)
        assert old.revoked_at is not None
        assert old.replaced_by_token_id == rotated.record.id

        # Presenting the same token again always fails
        assert await tokens.rotate_refresh_token(issued.raw_token, user.id) is None
        # The replacement is still good
        assert await tokens.rotate_refresh_token(rotated.raw_token, user.id) is not None

    @pytest.mark.asyncio
    async def test_rotation_loses_to_concurrent_revoke(
        self, tokens: TokenService, session, user: User, monkeypatch
    ):
        issued = await tokens.issue_refresh_token(user.id)
        record_id = issued.record.id
        stale = issued.record

        # Another request rotates the token after this one matched it
        await session.execute(
            update(RefreshToken)
            .where(col(RefreshToken.id) == record_id)
            .values(revoked_at=utcnow(), replaced_by_token_id="winner")
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        async def find_stale(raw_token, user_id, include_expired=False):
            return stale

        monkeypatch.setattr(tokens, "_find", find_stale)

        assert await tokens.rotate_refresh_token(issued.raw_token, user.id) is None

        [record] = await _records(session, user.id)
        assert record.id == record_id
        assert record.replaced_by_token_id == "winner"

    @pytest.mark.asyncio
    async def test_rotation_keeps_metadata(self, tokens: TokenService, user: User):
        issued = await tokens.issue_refresh_token(user.id, {"userAgent": "pytest"})
        rotated = await tokens.rotate_refresh_token(issued.raw_token, user.id)
        assert rotated.record.token_metadata == {"userAgent": "pytest"}

    @pytest.mark.asyncio
    async def test_rotation_matches_among_many(self, tokens: TokenService, user: User):
        first = await tokens.issue_refresh_token(user.id)
        second = await tokens.issue_refresh_token(user.id)

        rotated = await tokens.rotate_refresh_token(second.raw_token, user.id)
        assert rotated is not None
        assert await tokens.rotate_refresh_token(first.raw_token, user.id) is not None

    @pytest.mark.asyncio
    async def test_rotation_rejects_wrong_user(
        self, tokens: TokenService, user: User, admin_user: User
    ):
        issued = await tokens.issue_refresh_token(user.id)
        assert await tokens.rotate_refresh_token(issued.raw_token, admin_user.id) is None

    @pytest.mark.asyncio
    async def test_expired_token_cannot_rotate(
        self, tokens: TokenService, user: User, clock: MovableClock
    ):
        issued = await tokens.issue_refresh_token(user.id)
        clock.advance(days=7, seconds=1)
        assert await tokens.rotate_refresh_token(issued.raw_token, user.id) is None

    @pytest.mark.asyncio
    async def test_refresh_raises_for_unknown_token(self, tokens: TokenService, user: User):
        with pytest.raises(AuthInvalid):
            await tokens.refresh(f"{user.id}.not-a-real-secret")

    @pytest.mark.asyncio
    async def test_refresh_returns_new_token(self, tokens: TokenService, user: User):
        issued = await tokens.issue_refresh_token(user.id)
        rotated = await tokens.refresh(issued.presented)
        assert rotated.record.user_id == user.id

    @pytest.mark.asyncio
    async def test_revoke_single(self, tokens: TokenService, user: User):
        issued = await tokens.issue_refresh_token(user.id)

        assert await tokens.revoke_refresh_token(issued.raw_token, user.id) is True
        # Already revoked tokens no longer match
        assert await tokens.revoke_refresh_token(issued.raw_token, user.id) is False
        assert await tokens.rotate_refresh_token(issued.raw_token, user.id) is None

    @pytest.mark.asyncio
    async def test_revoke_all(self, tokens: TokenService, user: User, admin_user: User):
        mine = [await tokens.issue_refresh_token(user.id) for _ in range(3)]
        other = await tokens.issue_refresh_token(admin_user.id)

        assert await tokens.revoke_all_refresh_tokens(user.id) == 3
        assert await tokens.revoke_all_refresh_tokens(user.id) == 0

        for issued in mine:
            assert await tokens.rotate_refresh_token(issued.raw_token, user.id) is None
        assert await tokens.rotate_refresh_token(other.raw_token, admin_user.id) is not None

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_and_stale_revoked(
        self, tokens: TokenService, session, user: User, clock: MovableClock
    ):
        revoked = await tokens.issue_refresh_token(user.id)
        await tokens.revoke_refresh_token(revoked.raw_token, user.id)
        clock.advance(days=8)
        fresh = await tokens.issue_refresh_token(user.id)

        assert await tokens.cleanup_expired_tokens() == 1

        remaining = await _records(session, user.id)
        assert [r.id for r in remaining] == [fresh.record.id]

    @pytest.mark.asyncio
    async def test_issue_token_pair(self, tokens: TokenService, user: User):
        pair = await tokens.issue_token_pair(user, ["user"])

        assert pair.expires_in == 24 * 60 * 60
        assert tokens.verify_access_token(pair.access_token)["sub"] == user.id
        assert pair.refresh_token.startswith(f"{user.id}.")
