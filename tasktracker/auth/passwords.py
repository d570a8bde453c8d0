from functools import lru_cache

import bcrypt


def hash_secret(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def verify_secret(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        # unparseable stored hash
        return False


@lru_cache
def dummy_hash() -> str:
    """Hash checked when the user is unknown, so both login failures cost one bcrypt round."""
    return hash_secret("not-a-real-password")
