"""Password and client-secret hashing (bcrypt)."""

import bcrypt

BCRYPT_ROUNDS = 10

# Checked against when the principal or client is unknown, so timing matches a real comparison.
_DUMMY_HASH = bcrypt.hashpw(b"dummy-secret-for-timing", bcrypt.gensalt(BCRYPT_ROUNDS))


def hash_password(password: str) -> str:
    """Hash password with bcrypt. Bytes truncated to 72 (bcrypt limit)."""
    pwd_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(pwd_bytes, bcrypt.gensalt(BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify password with bcrypt. Malformed stored hashes never match."""
    plain_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(plain_bytes, password_hash.encode("utf-8"))
    except ValueError:
        return False


def dummy_verify(plain_password: str) -> bool:
    bcrypt.checkpw(plain_password.encode("utf-8")[:72], _DUMMY_HASH)
    return False


# Client secrets are stored exactly like passwords.
hash_client_secret = hash_password
verify_client_secret = verify_password
