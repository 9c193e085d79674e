"""Password hashing and verification (the credential verifier).

The hashing algorithm is whatever ``pwdlib`` recommends (argon2 today);
callers only ever see opaque hash strings.
"""

from pwdlib import PasswordHash

password_hash = PasswordHash.recommended()

# NOTE: verified against when a login names an unknown user, so both paths
# cost one hash verification.
DUMMY_HASH = password_hash.hash("tokenvault-dummy-password")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a plain password against a stored hash.

    Args:
        plain_password: The clear-text password provided by the user.
        hashed_password: The stored password hash to verify against.

    Returns:
        bool: True if the password matches, False otherwise.
    """
    if not plain_password or not hashed_password:
        return False
    return password_hash.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a plain password using the recommended algorithm.

    Args:
        password: Plain-text password to hash.

    Returns:
        str: The resulting password hash.
    """
    return password_hash.hash(password)
