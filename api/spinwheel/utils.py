import logging
import random
import re
from dataclasses import dataclass
from typing import Callable, Literal, Sequence

from .errors import CodeGenerationExhausted, InvalidIdentity, MissingIdentity, NoPrizesConfigured
from .models import Prize

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L
ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6

_NON_DIGITS = re.compile(r"\D")


# --- Identity ---

def normalize_phone(raw: str) -> str:
    """Digits only, last 10 kept; "+1 (555) 123-4567" -> "5551234567"."""
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) < 10:
        raise InvalidIdentity(f"phone must contain at least 10 digits, got {len(digits)}")
    return digits[-10:]


def normalize_email(raw: str) -> str:
    email = (raw or "").strip().lower()
    if "@" not in email:
        raise InvalidIdentity("email must contain '@'")
    return email


def normalize(raw: str, kind: Literal["phone", "email"]) -> str:
    if kind == "phone":
        return normalize_phone(raw)
    if kind == "email":
        return normalize_email(raw)
    raise ValueError(f"unknown identity kind: {kind!r}")


def mask_phone(phone: str | None) -> str:
    if not phone:
        return "-"
    return "*" * (len(phone) - 4) + phone[-4:]


def mask_email(email: str | None) -> str:
    if not email:
        return "-"
    local, _, domain = email.partition("@")
    return local[:2] + "***@" + domain


@dataclass(frozen=True)
class Identity:
    phone: str | None = None
    email: str | None = None

    @classmethod
    def from_raw(cls, phone: str | None = None, email: str | None = None) -> "Identity":
        phone = (phone or "").strip() or None
        email = (email or "").strip() or None
        if not phone and not email:
            raise MissingIdentity()
        return cls(
            phone=normalize_phone(phone) if phone else None,
            email=normalize_email(email) if email else None,
        )

    def __str__(self) -> str:
        parts = []
        if self.phone:
            parts.append(f"phone={mask_phone(self.phone)}")
        if self.email:
            parts.append(f"email={mask_email(self.email)}")
        return " ".join(parts)


# --- Prize selection ---

@dataclass(frozen=True)
class Selection:
    prize: Prize
    # True when every prize was capped out and the fallback was taken
    fallback: bool = False


def select_prize(prizes: Sequence[Prize], rng: random.Random) -> Selection:
    """Weighted draw over the prizes that still have capacity.

    Candidates are active prizes with a positive weight whose ``max_wins`` is
    unset or not yet reached, walked in ascending id order. A uniform value in
    ``[0, total_weight)`` is decremented by each weight and the first prize
    where the remainder drops to ``<= 0`` wins.

    When no candidate remains the first active prize (lowest id) is returned
    with ``fallback=True``. That prize is awarded even if it is capped, so its
    ``win_count`` can pass ``max_wins``; this keeps a user from walking away
    with nothing and is intentional.
    """
    active = sorted((p for p in prizes if p.active), key=lambda p: p.id)
    if not active:
        raise NoPrizesConfigured("No active prizes")

    available = [p for p in active if p.has_capacity and (p.weight or 0) > 0]
    if not available:
        return Selection(prize=active[0], fallback=True)

    total_weight = sum(p.weight for p in available)
    remainder = rng.random() * total_weight
    for p in available:
        remainder -= p.weight
        if remainder <= 0:
            return Selection(prize=p)
    # float rounding at the top end
    return Selection(prize=available[-1])


def weighted_choice(prizes: Sequence[Prize], rng: random.Random) -> Prize:
    return select_prize(prizes, rng).prize


# --- Coupon codes ---

def gen_code(rng: random.Random, prefix: str, length: int = CODE_LENGTH) -> str:
    # e.g. "GATEWAY-K7F9X2"
    return f"{prefix}-" + "".join(rng.choice(ALPHABET) for _ in range(length))


def generate_code(
    prize: Prize,
    exists: Callable[[str], bool],
    rng: random.Random,
    prefix: str,
    attempts: int = 10,
) -> tuple[str, bool]:
    """Return ``(code, shared)`` for a winner of ``prize``.

    A fixed ``coupon_code`` on the prize is handed out verbatim to every
    winner (``shared=True``) without a uniqueness check.
    """
    if prize.coupon_code:
        return prize.coupon_code, True

    for _ in range(attempts):
        candidate = gen_code(rng, prefix)
        if not exists(candidate):
            return candidate, False
        logger.warning("Coupon code collision on %s, regenerating", candidate)
    raise CodeGenerationExhausted(f"no unique code after {attempts} attempts")
