"""
Age computation and pseudonymous subject ids

Only a majority flag and a validity window ever leave this module's callers;
the birthdate itself is never stored.
"""

import hashlib
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from .errors import ValidationError


MAJORITY_AGE = 18
DEFAULT_USER_HASH_SALT = "legalproof_v1_default_salt"


@dataclass(frozen=True)
class BirthDate:
    """Birthdate as reported by the identity provider"""
    day: int    # 1-31
    month: int  # 1-12
    year: int   # e.g. 1985

    def __post_init__(self):
        if not 1 <= self.day <= 31:
            raise ValidationError("day must be between 1 and 31")
        if not 1 <= self.month <= 12:
            raise ValidationError("month must be between 1 and 12")
        if not 1900 <= self.year <= 2100:
            raise ValidationError("year must be between 1900 and 2100")
        try:
            date(self.year, self.month, self.day)
        except ValueError as e:
            raise ValidationError(f"Invalid calendar date: {e}")

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)


@dataclass(frozen=True)
class AgeComputation:
    age: int
    is_major: bool


def compute_age(
    birth_date: Union[BirthDate, date],
    reference_date: Optional[Union[date, datetime]] = None
) -> AgeComputation:
    """
    Age in whole years at reference_date (defaults to today)

    The age drops by one while this year's birthday has not been reached.
    """
    if isinstance(birth_date, BirthDate):
        birth_date = birth_date.to_date()
    if reference_date is None:
        reference_date = date.today()
    elif isinstance(reference_date, datetime):
        reference_date = reference_date.date()

    age = reference_date.year - birth_date.year
    if (reference_date.month, reference_date.day) < (birth_date.month, birth_date.day):
        age -= 1

    return AgeComputation(age=age, is_major=age >= MAJORITY_AGE)


class UserHasher:
    """Derives the stable pseudonymous claim subject (user_hash) from a wallet key"""

    def __init__(self, salt: str = DEFAULT_USER_HASH_SALT):
        self.salt = salt

    def compute_user_hash(self, wallet_pubkey: str) -> str:
        payload = f"{wallet_pubkey.strip()}:{self.salt}"
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
