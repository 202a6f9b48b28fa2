"""
PIN hashing.

PINs are only ever stored as salted scrypt hashes of the form
``scrypt$<salt hex>$<hash hex>`` and compared in constant time.
"""

import hashlib
import hmac
import secrets


class SecretHasher:
    """Opaque secret hashing capability used by the account directory"""

    ALGORITHM = "scrypt"

    def __init__(self, n: int = 16384, r: int = 8, p: int = 1):
        self.n = n
        self.r = r
        self.p = p

    def _generate_salt(self) -> str:
        """Generate random salt for PIN hashing"""
        return secrets.token_hex(16)

    def _derive(self, plain_text: str, salt: str) -> str:
        return hashlib.scrypt(
            plain_text.encode(),
            salt=salt.encode(),
            n=self.n, r=self.r, p=self.p
        ).hex()

    def hash_secret(self, plain_text: str) -> str:
        """Return an opaque, salted hash of ``plain_text``"""
        salt = self._generate_salt()
        return f"{self.ALGORITHM}${salt}${self._derive(plain_text, salt)}"

    def verify_secret(self, plain_text: str, opaque_hash: str) -> bool:
        """Check ``plain_text`` against a hash produced by hash_secret"""
        try:
            algorithm, salt, expected = opaque_hash.split("$")
        except (AttributeError, ValueError):
            return False
        if algorithm != self.ALGORITHM:
            return False
        return hmac.compare_digest(self._derive(plain_text, salt), expected)
