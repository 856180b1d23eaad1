"""
SmartNotes Backend — Authentication Service
=============================================

What:  Email/password identities and opaque bearer sessions.
Why:   Every other service scopes data to "the current user"; this is where that
       user comes from.
How:   PBKDF2-HMAC-SHA256 password hashes with a per-user salt. Sign-in issues a
       random URL-safe token; only its SHA-256 digest is stored with an expiry.

Stored hash format:
    pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>
    Iterations are stored per hash so the setting can be raised later without
    invalidating existing passwords.
"""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.config import settings
from smartnotes.database import as_utc, utcnow
from smartnotes.exceptions import (
    AuthenticationError,
    ConflictError,
    DatabaseError,
    ValidationError,
)
from smartnotes.models.user import AuthSession, AuthUser

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"


def hash_password(password: str, iterations: Optional[int] = None) -> str:
    iterations = iterations or settings.auth_hash_iterations
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt_hex, digest_hex = stored.split("$")
        if scheme != HASH_SCHEME:
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
        )
    except ValueError:
        logger.warning("Unreadable password hash encountered")
        return False
    return secrets.compare_digest(digest.hex(), digest_hex)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    """Stateless; every method receives the request's database session."""

    async def sign_up(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        full_name: Optional[str] = None,
    ) -> AuthUser:
        """
        Create an identity.

        Raises:
            ValidationError: password shorter than the configured minimum
            ConflictError: email already registered
        """
        email = email.strip().lower()
        if len(password) < settings.auth_min_password_length:
            raise ValidationError(
                message=f"Password must be at least {settings.auth_min_password_length} characters.",
                field="password",
            )

        existing = await db.execute(select(AuthUser.id).where(AuthUser.email == email))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(message="An account with this email already exists.")

        identity = AuthUser(
            email=email,
            password_hash=hash_password(password),
            full_name=(full_name or "").strip() or None,
        )
        db.add(identity)
        try:
            await db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent sign-up for the same email
            raise ConflictError(message="An account with this email already exists.") from e

        logger.info("Identity created: %s", identity.id)
        return identity

    async def sign_in(
        self, db: AsyncSession, email: str, password: str
    ) -> Tuple[str, AuthSession, AuthUser]:
        """
        Verify credentials and open a session.

        Returns:
            (plaintext token, session row, identity). The plaintext token is
            never stored and cannot be recovered later.
        """
        email = email.strip().lower()
        result = await db.execute(select(AuthUser).where(AuthUser.email == email))
        identity = result.scalar_one_or_none()

        if identity is None or not verify_password(password, identity.password_hash):
            logger.info("Failed sign-in attempt")
            raise AuthenticationError(message="Invalid email or password.")

        token = secrets.token_urlsafe(32)
        session = AuthSession(
            token_hash=hash_token(token),
            user_id=identity.id,
            expires_at=utcnow() + timedelta(seconds=settings.auth_session_ttl),
        )
        db.add(session)
        await db.flush()
        logger.info("Session opened for %s", identity.id)
        return token, session, identity

    async def get_user(self, db: AsyncSession, token: str) -> Optional[AuthUser]:
        """Identity behind a bearer token, or None when unknown or expired."""
        try:
            result = await db.execute(
                select(AuthSession, AuthUser)
                .join(AuthUser, AuthUser.id == AuthSession.user_id)
                .where(AuthSession.token_hash == hash_token(token))
            )
            row = result.first()
        except SQLAlchemyError as e:
            logger.error("Session lookup failed: %s", str(e))
            raise DatabaseError(message="Could not verify your session. Please try again.") from e

        if row is None:
            return None
        session, identity = row
        if as_utc(session.expires_at) <= utcnow():
            await db.delete(session)
            return None
        return identity

    async def sign_out(self, db: AsyncSession, token: str) -> None:
        await db.execute(delete(AuthSession).where(AuthSession.token_hash == hash_token(token)))

    async def delete_identity(self, db: AsyncSession, user_id) -> None:
        """Remove every session and the credential record. Used by account deletion."""
        await db.execute(delete(AuthSession).where(AuthSession.user_id == user_id))
        await db.execute(delete(AuthUser).where(AuthUser.id == user_id))


auth_service = AuthService()
