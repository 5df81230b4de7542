# adapters/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from werkzeug.security import generate_password_hash, check_password_hash

from estacionai import config
from estacionai.domain.errors import Unauthorized
from estacionai.domain.models import Identity

"""
Colaborador de autenticacion: tokens bearer (JWT HS256) y hash de claves.
El nucleo solo recibe la Identity ya resuelta; para login usa JwtCredentials
a traves del puerto Credentials.
"""


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return bool(password_hash) and check_password_hash(password_hash, password)


# ---------- JWT helpers ----------
def make_jwt(identity: Identity, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": f"{identity.role}:{identity.id}",
        "uid": identity.id,
        "role": identity.role,
        "iat": now,
        "exp": now + timedelta(minutes=config.JWT_TTL_MIN),
        "iss": config.JWT_ISSUER,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm="HS256")


def resolve_identity(token: Optional[str]) -> Identity:
    if not token:
        raise Unauthorized("falta el token bearer")
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=["HS256"],
            issuer=config.JWT_ISSUER,
            options={"require": ["exp", "iat", "iss"]},
        )
    except jwt.InvalidTokenError as e:
        raise Unauthorized("token invalido o vencido", reason=str(e))

    role = payload.get("role")
    uid = payload.get("uid")
    if role not in ("admin", "company") or not isinstance(uid, int):
        raise Unauthorized("el token no trae una identidad valida")
    return Identity(id=uid, role=role)


class JwtCredentials:
    def hash_password(self, password: str) -> str:
        return hash_password(password)

    def verify_password(self, password_hash: str, password: str) -> bool:
        return verify_password(password_hash, password)

    def issue_token(self, identity: Identity) -> str:
        return make_jwt(identity)
