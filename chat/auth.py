import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from chat.store import ChatStore

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
LOGIN_EMAIL_DOMAIN = "example.com"

PASSWORD_HASH_ALGORITHM = "sha256"
PASSWORD_PBKDF2_ITERATIONS = 200_000
PASSWORD_SALT_BYTES = 16
PASSWORD_HASH_SEPARATOR = "$"


class AuthError(Exception):
    """Sign-up or sign-in failure with a message fit for the user."""


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str


def to_email(login: str) -> str:
    """Plain login ids are mapped onto a fixed mail domain."""
    value = login.strip()
    return value if "@" in value else f"{value}@{LOGIN_EMAIL_DOMAIN}"


def hash_password(plaintext: str) -> str:
    salt = secrets.token_bytes(PASSWORD_SALT_BYTES)
    derived = hashlib.pbkdf2_hmac(
        PASSWORD_HASH_ALGORITHM,
        plaintext.encode("utf-8"),
        salt,
        PASSWORD_PBKDF2_ITERATIONS,
    )
    return PASSWORD_HASH_SEPARATOR.join(
        [PASSWORD_HASH_ALGORITHM, str(PASSWORD_PBKDF2_ITERATIONS), salt.hex(), derived.hex()]
    )


def verify_password(plaintext: str, stored: str) -> bool:
    try:
        algo, iterations_str, salt_hex, hash_hex = stored.split(PASSWORD_HASH_SEPARATOR)
        iterations = int(iterations_str)
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
    except ValueError:
        return False

    candidate = hashlib.pbkdf2_hmac(algo, plaintext.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(candidate, expected)


class AuthService:
    def __init__(self, store: ChatStore):
        self._store = store
        self._current: Optional[AuthUser] = None

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._current

    def sign_up(self, login: str, password: str) -> AuthUser:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"パスワードは{MIN_PASSWORD_LENGTH}文字以上にしてください")
        email = to_email(login)
        if not email.split("@", 1)[0]:
            raise AuthError("ログインIDを入力してください")
        try:
            user = self._store.create_user(email, hash_password(password))
        except IntegrityError as e:
            raise AuthError("このIDは既に登録されています") from e
        logger.info("Signed up %s", email)
        self._current = AuthUser(id=user.id, email=user.email)
        return self._current

    def sign_in(self, login: str, password: str) -> AuthUser:
        email = to_email(login)
        user = self._store.find_user(email)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthError("ログインに失敗しました")
        self._current = AuthUser(id=user.id, email=user.email)
        return self._current

    def sign_out(self) -> None:
        self._current = None
