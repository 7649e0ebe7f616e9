"""Identity service — credential checks and token issue for the sql provider.

Learn: This is the provider-side half of authentication. It is used in
two places with the same logic:
- SqlIdentityProvider, when the app talks to the database directly
- the provider service's /auth routes, which the rest backend calls

Tokens carry the identity's session epoch; revoke() bumps it.
"""

from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cvbank.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    token_expiry,
    verify_token,
)
from cvbank.auth.password import hash_password, verify_password
from cvbank.config import Settings
from cvbank.db.models import Identity
from cvbank.errors import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    SessionExpiredError,
)
from cvbank.schemas.session import ProviderSession


class IdentityService:
    """Credentials + JWT sessions backed by the identities table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self.session_factory = session_factory
        self.settings = settings

    def _issue(self, identity: Identity) -> ProviderSession:
        access = create_access_token(self.settings, identity.id, identity.session_epoch)
        return ProviderSession(
            user_id=identity.id,
            email=identity.email,
            access_token=access,
            refresh_token=create_refresh_token(
                self.settings, identity.id, identity.session_epoch
            ),
            expires_at=token_expiry(self.settings, access),
        )

    async def _by_email(self, db: AsyncSession, email: str) -> Optional[Identity]:
        result = await db.execute(
            select(Identity).where(func.lower(Identity.email) == email.strip().lower())
        )
        return result.scalars().first()

    async def create_identity(self, email: str, password: str) -> ProviderSession:
        """Register credentials and return a signed-in session."""
        async with self.session_factory() as db:
            if await self._by_email(db, email):
                raise EmailAlreadyRegisteredError(email)
            identity = Identity(
                email=email.strip(),
                password_hash=hash_password(password, rounds=self.settings.bcrypt_rounds),
                session_epoch=0,
            )
            db.add(identity)
            try:
                await db.commit()
            except IntegrityError:
                # Lost a race with a concurrent registration of the same email
                await db.rollback()
                raise EmailAlreadyRegisteredError(email)
            return self._issue(identity)

    async def authenticate(self, email: str, password: str) -> ProviderSession:
        async with self.session_factory() as db:
            identity = await self._by_email(db, email)
        if not identity or not verify_password(password, identity.password_hash):
            raise InvalidCredentialsError("Invalid credentials")
        return self._issue(identity)

    async def _check(self, token: str, token_type: str) -> Identity:
        try:
            payload = verify_token(self.settings, token, expected_type=token_type)
        except TokenError as e:
            raise SessionExpiredError(str(e))
        async with self.session_factory() as db:
            identity = await db.get(Identity, payload["sub"])
        if identity is None or identity.session_epoch != payload.get("epoch"):
            raise SessionExpiredError("Session has been revoked")
        return identity

    async def resolve_access_token(self, token: str) -> ProviderSession:
        """Validate an access token; returns the session it belongs to.

        Raises SessionExpiredError for expired, forged or revoked tokens.
        """
        identity = await self._check(token, "access")
        return ProviderSession(
            user_id=identity.id,
            email=identity.email,
            access_token=token,
            expires_at=token_expiry(self.settings, token),
        )

    async def refresh(self, refresh_token: str) -> ProviderSession:
        """Exchange a refresh token for a new access + refresh pair."""
        identity = await self._check(refresh_token, "refresh")
        return self._issue(identity)

    async def revoke(self, user_id: str) -> None:
        """Invalidate every token issued so far for user_id."""
        async with self.session_factory() as db:
            await db.execute(
                update(Identity)
                .where(Identity.id == user_id)
                .values(session_epoch=Identity.session_epoch + 1)
            )
            await db.commit()
