import base64
import secrets
from os import urandom

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
KEY_LEN = 32
SALT_LEN = 16
HASH_SCHEME = "scrypt"
TOKEN_BYTES = 32


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unb64(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + ("=" * ((-len(s)) % 4)))


class ScryptPasswordHasher:
    """Salted scrypt hashes encoded as ``scrypt$n$r$p$salt$key``."""

    def __init__(self, n: int = SCRYPT_N, r: int = SCRYPT_R, p: int = SCRYPT_P):
        self.n = n
        self.r = r
        self.p = p

    def hash(self, password: str) -> str:
        salt = urandom(SALT_LEN)
        kdf = Scrypt(salt=salt, length=KEY_LEN, n=self.n, r=self.r, p=self.p)
        key = kdf.derive(password.encode("utf-8"))
        return "$".join([HASH_SCHEME, str(self.n), str(self.r), str(self.p), _b64(salt), _b64(key)])

    def verify(self, encoded: str, password: str) -> bool:
        try:
            scheme, n, r, p, salt_b64, key_b64 = encoded.split("$")
            if scheme != HASH_SCHEME:
                return False
            salt = _unb64(salt_b64)
            expected = _unb64(key_b64)
            kdf = Scrypt(salt=salt, length=len(expected), n=int(n), r=int(r), p=int(p))
        except ValueError:
            return False
        try:
            kdf.verify(password.encode("utf-8"), expected)
        except InvalidKey:
            return False
        return True


def get_password_hasher() -> ScryptPasswordHasher:
    return ScryptPasswordHasher()


def new_session_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)
