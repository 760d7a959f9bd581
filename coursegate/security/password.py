from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from argon2.low_level import Type


argon2_hasher = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
    type=Type.ID,
)

DUMMY_PASSWORD_HASH = argon2_hasher.hash("coursegate-dummy-password")


def hash_password(password: str, hasher: PasswordHasher = argon2_hasher) -> str:
    return hasher.hash(password)


def verify_password(password_hash: str | None, password: str, hasher: PasswordHasher = argon2_hasher) -> bool:
    # Unknown accounts still pay for one verification so timing does not leak existence.
    try:
        return hasher.verify(password_hash or DUMMY_PASSWORD_HASH, password) and password_hash is not None
    except (VerificationError, InvalidHashError):
        return False
