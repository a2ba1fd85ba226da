import secrets

import bcrypt

PASSWORD_ALPHABET = (
    "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789!@#$%^&*"
)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # not a bcrypt hash
        return False


def generate_password(length: int = 16) -> str:
    if length <= 0:
        length = 16
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
