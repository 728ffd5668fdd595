"""
Gestión de JWT con RS256 (claves asimétricas).
El emisor de tokens es el servicio de autenticación; aquí se verifican
y, para herramientas internas, se firman access tokens.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from odontocore.config import get_settings

settings = get_settings()


class TokenType:
    ACCESS = "access"
    REFRESH = "refresh"


def create_access_token(
    user_id: UUID,
    clinic_id: UUID,
    role: str,
    extra_claims: dict | None = None,
) -> str:
    """Crea un access token JWT RS256 (corta duración)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "clinic_id": str(clinic_id),
        "role": role,
        "type": TokenType.ACCESS,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(
        payload,
        settings.jwt_private_key,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> dict:
    """
    Decodifica y verifica un token JWT.
    Lanza jwt.InvalidTokenError si el token es inválido o expirado.
    """
    return jwt.decode(
        token,
        settings.jwt_public_key,
        algorithms=[settings.JWT_ALGORITHM],
    )
