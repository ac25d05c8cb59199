from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, FrozenSet, Optional

from storeauth.config import Settings
from storeauth.logging import get_logger
from storeauth.service.errors import TokenExpired, TokenInvalid
from storeauth.storage.models import User

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_PREFIX = "Bearer "


@dataclass(frozen=True)
class IssuedToken:
    token: str
    header_name: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    authorities: FrozenSet[str]
    expires_at: datetime


class TokenService:
    """Mint and verify signed bearer tokens.

    Tokens carry the username and the authorities the user held when the
    token was issued. Validation never looks the user up again, so a role
    change only takes effect once the client obtains a new token.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._secret = settings.jwt_secret.encode()
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.ttl = timedelta(minutes=settings.token_ttl_minutes)
        self.header_name = settings.token_header_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": JWT_ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str):
            raise TokenInvalid("token is missing")
        # compare_digest only accepts ASCII strings
        if not token.isascii():
            raise TokenInvalid("token is malformed")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError as exc:
            raise TokenInvalid("token is malformed") from exc

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_header_decode_failed")
            raise TokenInvalid("token is malformed") from exc
        if not isinstance(header, dict) or header.get("alg") != JWT_ALGORITHM:
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise TokenInvalid("token algorithm not accepted")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise TokenInvalid("token signature mismatch")
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise TokenInvalid("token is malformed") from exc
        if not isinstance(payload, dict):
            raise TokenInvalid("token is malformed")
        return payload

    def issue(self, user: User) -> IssuedToken:
        now = self._clock()
        expires_at = now + self.ttl
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "sub": user.username,
            "authorities": sorted(user.authorities),
            "exp": int(expires_at.timestamp()),
        }
        token = self._encode_jwt(payload)
        logger.debug("token_issued", username=user.username, exp=payload["exp"])
        return IssuedToken(
            token=token,
            header_name=self.header_name,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def validate(self, token: str) -> TokenClaims:
        payload = self._decode_jwt(token)
        if payload.get("iss") != self.issuer:
            raise TokenInvalid("token issuer mismatch")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise TokenInvalid("token audience mismatch")
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenInvalid("token subject missing")
        authorities = payload.get("authorities", [])
        if not isinstance(authorities, list) or not all(
            isinstance(a, str) for a in authorities
        ):
            raise TokenInvalid("token authorities malformed")
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid("token expiration missing") from exc
        if self._clock().timestamp() >= exp_ts:
            raise TokenExpired("token has expired", detail={"subject": subject})
        return TokenClaims(
            subject=subject,
            authorities=frozenset(authorities),
            expires_at=datetime.fromtimestamp(exp_ts, tz=timezone.utc),
        )

    def extract(self, header_value: Optional[str]) -> Optional[str]:
        """Strip an optional ``Bearer`` prefix from a presented header value."""
        if not header_value:
            return None
        parts = header_value.split(None, 1)
        if not parts:
            return None
        if parts[0].lower() == TOKEN_PREFIX.strip().lower():
            return parts[1].strip() if len(parts) > 1 else None
        return header_value.strip()
