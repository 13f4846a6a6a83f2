"""Access and refresh token management.

Access tokens are stateless HS256 JWTs. Refresh tokens are random secrets;
the database only keeps a bcrypt hash, so the raw value is handed out once.
Clients receive refresh tokens as ``<user_id>.<secret>`` so the owning
user's records can be found without a lookup table.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from sqlalchemy import and_, delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import col, select

from usersvc.config import Settings, settings
from usersvc.errors import AuthInvalid, WrongTokenType
from usersvc.models import Profile, RefreshToken, User, generate_nanoid, utcnow
from usersvc.services.hashing import generate_token_secret, hash_secret, verify_secret

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


@dataclass
class TokenConfig:
    secret: str
    algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(days=1)
    refresh_ttl: timedelta = timedelta(days=7)
    revoked_retention: timedelta = timedelta(days=7)
    bcrypt_rounds: int = 10

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "TokenConfig":
        source = source or settings
        return cls(
            secret=source.jwt_secret,
            algorithm=source.jwt_algorithm,
            access_ttl=timedelta(minutes=source.access_token_expire_minutes),
            refresh_ttl=timedelta(days=source.refresh_token_ttl_days),
            revoked_retention=timedelta(days=source.refresh_token_revoked_retention_days),
            bcrypt_rounds=source.bcrypt_rounds,
        )


@dataclass
class IssuedRefreshToken:
    """A freshly minted refresh token. ``raw_token`` is not recoverable later."""

    raw_token: str
    record: RefreshToken

    @property
    def presented(self) -> str:
        return encode_refresh_token(self.record.user_id, self.raw_token)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


def encode_refresh_token(user_id: str, raw_token: str) -> str:
    return f"{user_id}.{raw_token}"


def build_access_claims(
    user: User,
    roles: Sequence[str] = (),
    profile: Profile | None = None,
) -> dict[str, Any]:
    """Identity claims carried by an access token."""
    claims: dict[str, Any] = {
        "sub": user.id,
        "username": user.username,
        "email": user.email,
        "phone": user.phone,
        "is_verified": user.is_verified,
        "status": user.status,
        "auth_provider": user.auth_provider,
        "roles": list(roles),
    }
    if profile is not None:
        claims["profile"] = profile.snapshot()
    return claims


class TokenService:
    """Sign, verify, issue, rotate and revoke tokens for one database session."""

    def __init__(
        self,
        session: AsyncSession,
        config: TokenConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.config = config or TokenConfig.from_settings()
        self.clock = clock

    # Access tokens

    def sign_access_token(self, claims: dict[str, Any]) -> str:
        now = self.clock()
        payload = {
            **claims,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.config.access_ttl,
        }
        return jwt.encode(payload, self.config.secret, algorithm=self.config.algorithm)

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """Decode an access token, raising ``AuthInvalid`` on any problem."""
        try:
            payload = jwt.decode(token, self.config.secret, algorithms=[self.config.algorithm])
        except JWTError as e:
            raise AuthInvalid("Invalid or expired token") from e

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise AuthInvalid("Invalid token type")
        if not payload.get("sub"):
            raise AuthInvalid("Invalid token: missing user ID")
        return payload

    # Refresh tokens

    def parse_refresh_token(self, presented: str) -> tuple[str, str]:
        """Split a presented refresh token into ``(user_id, raw_secret)``."""
        parts = (presented or "").split(".")
        if len(parts) == 3:
            try:
                claims = jwt.get_unverified_claims(presented)
            except JWTError:
                claims = {}
            if claims.get("type") == ACCESS_TOKEN_TYPE:
                raise WrongTokenType("Access token provided where a refresh token is required")
        if len(parts) != 2 or not all(parts):
            raise AuthInvalid("Invalid or expired refresh token")
        return parts[0], parts[1]

    def _new_record(
        self,
        user_id: str,
        hashed: str,
        metadata: dict[str, Any] | None,
        token_id: str | None = None,
    ) -> RefreshToken:
        return RefreshToken(
            id=token_id or generate_nanoid(),
            user_id=user_id,
            hashed_token=hashed,
            expires_at=self.clock() + self.config.refresh_ttl,
            token_metadata=metadata,
        )

    async def _hash(self, raw: str) -> str:
        return await asyncio.to_thread(hash_secret, raw, self.config.bcrypt_rounds)

    async def issue_refresh_token(
        self,
        user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> IssuedRefreshToken:
        raw = generate_token_secret()
        record = self._new_record(user_id, await self._hash(raw), metadata)
        self.session.add(record)
        await self.session.commit()
        return IssuedRefreshToken(raw_token=raw, record=record)

    async def _candidates(self, user_id: str, include_expired: bool = False) -> list[RefreshToken]:
        stmt = select(RefreshToken).where(
            RefreshToken.user_id == user_id,
            col(RefreshToken.revoked_at).is_(None),
        )
        if not include_expired:
            stmt = stmt.where(RefreshToken.expires_at > self.clock())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _match(raw: str, records: Sequence[RefreshToken]) -> RefreshToken | None:
        # Check every candidate so timing does not reveal which record matched
        matched = None
        for record in records:
            if verify_secret(raw, record.hashed_token) and matched is None:
                matched = record
        return matched

    async def _find(self, raw: str, user_id: str, include_expired: bool = False):
        records = await self._candidates(user_id, include_expired=include_expired)
        return await asyncio.to_thread(self._match, raw, records)

    async def _revoke(self, record: RefreshToken, replaced_by: str | None = None) -> bool:
        """Revoke ``record`` if nobody else has. True only for the caller that won."""
        now = self.clock()
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.id == record.id, col(RefreshToken.revoked_at).is_(None))
            .values(revoked_at=now, replaced_by_token_id=replaced_by)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        set_committed_value(record, "revoked_at", now)
        set_committed_value(record, "replaced_by_token_id", replaced_by)
        return True

    async def rotate_refresh_token(self, raw_token: str, user_id: str) -> IssuedRefreshToken | None:
        """Exchange an active refresh token for a new one.

        Returns None if the token is unknown, expired, revoked or was rotated
        concurrently. The old record is revoked in the same transaction that
        stores its replacement.
        """
        matched = await self._find(raw_token, user_id)
        if matched is None:
            return None

        new_raw = generate_token_secret()
        new_record = self._new_record(
            user_id,
            await self._hash(new_raw),
            matched.token_metadata,
            token_id=generate_nanoid(),
        )

        matched_id = matched.id
        if not await self._revoke(matched, replaced_by=new_record.id):
            await self.session.rollback()
            logger.warning(f"Refresh token {matched_id} was already rotated")
            return None

        self.session.add(new_record)
        await self.session.commit()
        logger.info(f"Rotated refresh token {matched_id} -> {new_record.id} for user {user_id}")
        return IssuedRefreshToken(raw_token=new_raw, record=new_record)

    async def refresh(self, presented: str) -> IssuedRefreshToken:
        """Rotate a presented ``<user_id>.<secret>`` token or raise ``AuthInvalid``."""
        user_id, raw = self.parse_refresh_token(presented)
        rotated = await self.rotate_refresh_token(raw, user_id)
        if rotated is None:
            raise AuthInvalid("Invalid or expired refresh token")
        return rotated

    async def revoke_refresh_token(self, raw_token: str, user_id: str) -> bool:
        matched = await self._find(raw_token, user_id, include_expired=True)
        if matched is None:
            return False
        revoked = await self._revoke(matched)
        await self.session.commit()
        return revoked

    async def revoke_all_refresh_tokens(self, user_id: str) -> int:
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, col(RefreshToken.revoked_at).is_(None))
            .values(revoked_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        count = result.rowcount or 0
        logger.info(f"Revoked {count} refresh tokens for user {user_id}")
        return count

    async def cleanup_expired_tokens(self) -> int:
        """Delete expired tokens and tokens revoked longer ago than the retention window."""
        now = self.clock()
        stmt = delete(RefreshToken).where(
            or_(
                RefreshToken.expires_at < now,
                and_(
                    col(RefreshToken.revoked_at).is_not(None),
                    col(RefreshToken.revoked_at) < now - self.config.revoked_retention,
                ),
            )
        ).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        await self.session.commit()
        removed = result.rowcount or 0
        logger.info(f"Removed {removed} stale refresh tokens")
        return removed

    async def issue_token_pair(
        self,
        user: User,
        roles: Sequence[str] = (),
        profile: Profile | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TokenPair:
        access = self.sign_access_token(build_access_claims(user, roles, profile))
        refresh = await self.issue_refresh_token(user.id, metadata)
        return TokenPair(
            access_token=access,
            refresh_token=refresh.presented,
            expires_in=int(self.config.access_ttl.total_seconds()),
        )
