import bcrypt, secrets
from datetime import datetime, timedelta, timezone
from fastapi import Header, HTTPException, status
from jose import jwt, JWTError
from .config import settings

ALGO = "HS256"

# failed admin logins per client address
_failed: dict[str, list[float]] = {}
MAX_ATTEMPTS = 5
WINDOW_SEC = 15 * 60  # 15 minutes


def verify_admin_password(plaintext: str) -> bool:
    """
    Prefer ADMIN_PASSWORD_HASH (bcrypt $2b$...); fall back to ADMIN_PASSWORD (plaintext).
    """
    if settings.admin_password_hash:
        try:
            return bcrypt.checkpw(
                plaintext.encode("utf-8"),
                settings.admin_password_hash.encode("utf-8"),
            )
        except ValueError:
            # malformed hash in config
            return False
    if settings.admin_password:
        return secrets.compare_digest(plaintext, settings.admin_password)
    return False


def make_admin_token() -> str:
    exp = datetime.now(timezone.utc) + timedelta(hours=settings.admin_token_hours)
    return jwt.encode({"sub": "admin", "role": "admin", "exp": exp}, settings.jwt_secret, algorithm=ALGO)


def require_admin(authorization: str | None = Header(default=None, alias="Authorization")):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if payload.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not an admin")
    return True


def _now_s() -> float:
    return datetime.now(timezone.utc).timestamp()


def check_login_throttle(ip: str):
    t = _now_s()
    arr = [x for x in _failed.get(ip, []) if t - x < WINDOW_SEC]
    _failed[ip] = arr
    if len(arr) >= MAX_ATTEMPTS:
        raise HTTPException(status_code=429, detail="Too many failed login attempts, try again later.")


def mark_login_failure(ip: str):
    _failed.setdefault(ip, []).append(_now_s())


def clear_login_failures(ip: str):
    _failed.pop(ip, None)
