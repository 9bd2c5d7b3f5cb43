"""
JWT Token Handling

Issue and verify signed bearer credentials carrying
{subject, tenant, role}. Expiry is judged against an injected clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional
from uuid import UUID, uuid4

import jwt
from jwt.exceptions import InvalidTokenError

from germy_auth.core.types import Clock, Role, TokenClaims, utcnow
from germy_auth.exceptions import InvalidCredential

logger = logging.getLogger(__name__)


DEFAULT_ISSUER = "germy-auth-service"
DEFAULT_AUDIENCE = "germy-platform"
REQUIRED_CLAIMS = ["sub", "role", "iat", "exp", "iss", "aud", "jti"]


@dataclass(frozen=True)
class SigningKey:
    """HMAC secret identified by a version id (the JWT ``kid`` header)."""

    key_id: str
    secret: str


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: TokenClaims

    @property
    def expires_in(self) -> int:
        return int((self.claims.expires_at - self.claims.issued_at).total_seconds())


class TokenService:
    """
    Issues and verifies access tokens.

    One key signs; every key in the ring verifies, selected by ``kid``,
    so a retired key keeps validating its tokens until they expire.
    """

    def __init__(
        self,
        signing_key: SigningKey,
        verification_keys: Optional[Iterable[SigningKey]] = None,
        ttl: timedelta = timedelta(hours=24),
        algorithm: str = "HS256",
        issuer: str = DEFAULT_ISSUER,
        audience: str = DEFAULT_AUDIENCE,
        clock: Optional[Clock] = None,
    ):
        self.signing_key = signing_key
        self.ttl = ttl
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self._clock = clock or utcnow

        self._keys: Dict[str, SigningKey] = {signing_key.key_id: signing_key}
        for key in verification_keys or ():
            self._keys.setdefault(key.key_id, key)

    def issue(
        self,
        subject_id: UUID,
        tenant_id: Optional[UUID],
        role: Role,
        token_version: int = 1,
    ) -> IssuedToken:
        """
        Create a new access token.

        Args:
            subject_id: Subject's UUID
            tenant_id: Owning tenant, None for platform principals
            role: Role the subject authenticated as
            token_version: Subject's current token version

        Returns:
            The encoded token and the claims it carries
        """
        role = Role(role)
        # JWT timestamps have second resolution
        now = self._clock().astimezone(timezone.utc).replace(microsecond=0)
        expire = now + self.ttl
        token_id = uuid4().hex

        payload = {
            "sub": str(subject_id),
            "tid": str(tenant_id) if tenant_id else None,
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
            "jti": token_id,
            "ver": token_version,
        }

        token = jwt.encode(
            payload,
            self.signing_key.secret,
            algorithm=self.algorithm,
            headers={"kid": self.signing_key.key_id},
        )

        claims = TokenClaims(
            subject_id=subject_id,
            tenant_id=tenant_id,
            role=role,
            issued_at=now,
            expires_at=expire,
            token_id=token_id,
            token_version=token_version,
            key_id=self.signing_key.key_id,
        )
        return IssuedToken(token=token, claims=claims)

    def verify(self, token: str) -> TokenClaims:
        """
        Verify signature, issuer, audience and expiry.

        Raises:
            InvalidCredential: If any check fails or a claim is malformed
        """
        try:
            header = jwt.get_unverified_header(token)
        except InvalidTokenError as e:
            raise InvalidCredential(details={"reason": "malformed"}) from e

        key_id = header.get("kid", self.signing_key.key_id)
        key = self._keys.get(key_id)
        if key is None:
            raise InvalidCredential(details={"reason": "unknown_key"})

        try:
            payload = jwt.decode(
                token,
                key.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                # Time claims are checked against the injected clock below
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except InvalidTokenError as e:
            logger.debug(f"Token verification failed: {e}")
            raise InvalidCredential(details={"reason": type(e).__name__}) from e

        claims = self._claims_from_payload(payload, key_id)
        if self._clock() >= claims.expires_at:
            raise InvalidCredential(details={"reason": "expired"})
        return claims

    def decode(self, token: str) -> Optional[dict]:
        """
        Return embedded claims without verifying signature or expiry.

        For diagnostics and administrative inspection only.
        """
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except InvalidTokenError:
            return None

    @staticmethod
    def _claims_from_payload(payload: dict, key_id: Optional[str]) -> TokenClaims:
        try:
            tenant = payload.get("tid")
            return TokenClaims(
                subject_id=UUID(payload["sub"]),
                tenant_id=UUID(tenant) if tenant else None,
                role=Role(payload["role"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                token_id=str(payload["jti"]),
                token_version=int(payload.get("ver", 1)),
                key_id=key_id,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCredential(details={"reason": "malformed_claims"}) from e
