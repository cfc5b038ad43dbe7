"""Request authentication: which identity does this request carry?

Resolution order:
  1. ``Authorization: Bearer <token>`` as a session token,
  2. the same bearer value as an API key,
  3. ``X-API-Key: <key>`` when there is no bearer,
  4. anonymous.

A credential that is presented but fails is reported as an error, never
silently downgraded to anonymous. The rate-limit identifier follows the
same precedence: user id, then key id, then the prefix of a rejected key,
then the client address.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import Headers

from gatekeeper.core.errors import (
    ExpiredApiKey,
    GatekeeperError,
    InvalidApiKey,
    InvalidCredentials,
    RevokedApiKey,
    SessionExpired,
    SessionNotFound,
)
from gatekeeper.services.credential_store import CredentialStore
from gatekeeper.services.key_registry import KeyRegistry
from gatekeeper.services.session_manager import SessionManager

KEY_PREFIX_CHARS = 16


@dataclass(frozen=True)
class Identity:
    kind: str = "anonymous"  # "session" | "api_key" | "anonymous"
    user_id: uuid.UUID | None = None
    username: str | None = None
    email: str | None = None
    role: str | None = None
    key_id: uuid.UUID | None = None
    scopes: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.kind != "anonymous"

    @property
    def is_admin(self) -> bool:
        return self.kind == "session" and self.role == "Admin"


ANONYMOUS = Identity()


@dataclass(frozen=True)
class Credentials:
    bearer: str | None = None
    api_key: str | None = None
    malformed: bool = False

    @property
    def presented(self) -> str | None:
        return self.bearer or self.api_key


@dataclass(frozen=True)
class AuthResult:
    identity: Identity = ANONYMOUS
    error: GatekeeperError | None = None
    # Raw value of a credential that failed; only its prefix is ever used
    rejected_credential: str | None = None


def extract_credentials(headers: Headers) -> Credentials:
    bearer = None
    malformed = False
    authorization = headers.get("authorization")
    if authorization is not None:
        scheme, _, value = authorization.strip().partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            bearer = value.strip()
        else:
            malformed = True
    api_key = (headers.get("x-api-key") or "").strip() or None
    return Credentials(bearer=bearer, api_key=api_key, malformed=malformed)


def client_address(headers: Headers, client_host: str | None, *, trust_forwarded_for: bool) -> str:
    """Peer address, or the first X-Forwarded-For hop when the proxy is trusted."""
    if trust_forwarded_for:
        forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return client_host or "unknown"


class RequestAuthenticator:
    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SessionManager,
        keys: KeyRegistry,
        *,
        trust_forwarded_for: bool = False,
    ):
        self.credentials = credentials
        self.sessions = sessions
        self.keys = keys
        self.trust_forwarded_for = trust_forwarded_for

    async def authenticate(self, db: AsyncSession, creds: Credentials) -> AuthResult:
        if creds.malformed:
            return AuthResult(error=InvalidCredentials("Invalid or malformed credentials"))

        if creds.bearer:
            try:
                user = await self.sessions.validate_session(db, creds.bearer)
            except SessionExpired as exc:
                return AuthResult(error=exc, rejected_credential=creds.bearer)
            except SessionNotFound:
                pass
            else:
                return AuthResult(
                    identity=Identity(
                        kind="session",
                        user_id=user.id,
                        username=user.username,
                        email=user.email,
                        role=user.role.value,
                    )
                )
            try:
                return AuthResult(identity=await self._key_identity(db, creds.bearer))
            except InvalidApiKey:
                return AuthResult(
                    error=InvalidCredentials("Invalid or expired credentials"),
                    rejected_credential=creds.bearer,
                )
            except (RevokedApiKey, ExpiredApiKey) as exc:
                return AuthResult(error=exc, rejected_credential=creds.bearer)

        if creds.api_key:
            try:
                return AuthResult(identity=await self._key_identity(db, creds.api_key))
            except (InvalidApiKey, RevokedApiKey, ExpiredApiKey) as exc:
                return AuthResult(error=exc, rejected_credential=creds.api_key)

        return AuthResult()

    async def _key_identity(self, db: AsyncSession, raw_key: str) -> Identity:
        key = await self.keys.validate_key(db, raw_key)
        owner = None
        if key.user_id is not None:
            owner = await self.credentials.get_user(db, key.user_id)
        return Identity(
            kind="api_key",
            user_id=key.user_id,
            username=owner.username if owner else None,
            email=owner.email if owner else None,
            role=owner.role.value if owner else None,
            key_id=key.id,
            scopes=key.scopes,
        )

    def client_address(self, headers: Headers, client_host: str | None) -> str:
        return client_address(
            headers, client_host, trust_forwarded_for=self.trust_forwarded_for
        )

    def rate_limit_identifier(
        self,
        result: AuthResult,
        headers: Headers,
        client_host: str | None,
    ) -> str:
        identity = result.identity
        if identity.user_id is not None:
            return f"user:{identity.user_id}"
        if identity.key_id is not None:
            return f"apikey:{identity.key_id}"
        if result.rejected_credential:
            return f"key:{result.rejected_credential[:KEY_PREFIX_CHARS]}"
        return f"ip:{self.client_address(headers, client_host)}"
