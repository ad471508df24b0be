"""
Password-encrypted keystore for the TruthStamp signing key.

On-disk format (JSON, one wallet per file)::

    {
      "scheme": "truthstamp-keystore",
      "version": 1,
      "address": "0x…",
      "cipher": {"algorithm": "aes-256-gcm", "iv": "<hex>"},
      "kdf": {"algorithm": "scrypt", "salt": "<hex>",
              "n": 131072, "r": 8, "p": 1, "dklen": 32},
      "ciphertext": "<hex>",
      "tag": "<hex>"
    }

The encryption key is derived from the password with scrypt and a fresh
salt; the 32-byte private key is sealed with AES-256-GCM under a fresh IV.
A wrong password fails the GCM tag check and never yields key material.

Writes go to a temporary file in the same directory which is fsynced,
restricted to the owner (0600) and then renamed over the target; the
directory is fsynced after the rename.  A crash never leaves a
half-written keystore in place of a valid one.
Concurrent writers are not synchronised.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from Crypto.Cipher import AES
from Crypto.Protocol.KDF import scrypt

from truthstamp_core.crypto_utils import addresses_equal, is_valid_private_key
from truthstamp_core.errors import (
    CorruptKeystore,
    KeystoreIOError,
    KeystoreNotFound,
    WrongPassword,
)
from truthstamp_core.wallet import Wallet

logger = logging.getLogger("truthstamp_keystore")

KEYSTORE_SCHEME = "truthstamp-keystore"
KEYSTORE_VERSION = 1
CIPHER_ALGORITHM = "aes-256-gcm"
KDF_ALGORITHM = "scrypt"

# scrypt costs: n=2**17, r=8 → 128 MiB and roughly a second per unlock
DEFAULT_SCRYPT_N = 2 ** 17
DEFAULT_SCRYPT_R = 8
DEFAULT_SCRYPT_P = 1

# largest costs accepted from a keystore file
MAX_SCRYPT_N = 2 ** 20
MAX_SCRYPT_MEMORY = 2 ** 30         # 128 * n * r bytes
MAX_SCRYPT_RP = 2 ** 30 - 1

_KEY_LENGTH = 32
_SALT_LENGTH = 32
_IV_LENGTH = 12
_TAG_LENGTH = 16
_AAD = f"{KEYSTORE_SCHEME}/v{KEYSTORE_VERSION}".encode("ascii")


@dataclass(frozen=True)
class KDFParams:
    salt: bytes
    n: int = DEFAULT_SCRYPT_N
    r: int = DEFAULT_SCRYPT_R
    p: int = DEFAULT_SCRYPT_P
    dklen: int = _KEY_LENGTH
    algorithm: str = KDF_ALGORITHM

    def derive(self, password: str) -> bytes:
        return scrypt(
            password.encode("utf-8"), self.salt, key_len=self.dklen,
            N=self.n, r=self.r, p=self.p,
        )


@dataclass(frozen=True)
class EncryptedKeystore:
    address: str
    iv: bytes
    kdf: KDFParams
    ciphertext: bytes
    tag: bytes
    version: int = KEYSTORE_VERSION
    cipher_algorithm: str = CIPHER_ALGORITHM

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheme": KEYSTORE_SCHEME,
            "version": self.version,
            "address": self.address,
            "cipher": {"algorithm": self.cipher_algorithm, "iv": self.iv.hex()},
            "kdf": {
                "algorithm": self.kdf.algorithm,
                "salt": self.kdf.salt.hex(),
                "n": self.kdf.n,
                "r": self.kdf.r,
                "p": self.kdf.p,
                "dklen": self.kdf.dklen,
            },
            "ciphertext": self.ciphertext.hex(),
            "tag": self.tag.hex(),
        }

    @staticmethod
    def from_dict(data: Any, path: str | None = None) -> EncryptedKeystore:
        """Parse and structurally validate a keystore document."""
        if not isinstance(data, dict):
            raise CorruptKeystore("Keystore is not a JSON object", path=path)
        if data.get("scheme") != KEYSTORE_SCHEME:
            raise CorruptKeystore(
                f"Unsupported keystore scheme: {data.get('scheme')!r}", path=path,
            )
        try:
            version = int(data["version"])
            cipher = data["cipher"]
            kdf = data["kdf"]
            keystore = EncryptedKeystore(
                address=str(data["address"]),
                iv=bytes.fromhex(cipher["iv"]),
                kdf=KDFParams(
                    salt=bytes.fromhex(kdf["salt"]),
                    n=int(kdf["n"]),
                    r=int(kdf["r"]),
                    p=int(kdf["p"]),
                    dklen=int(kdf.get("dklen", _KEY_LENGTH)),
                    algorithm=str(kdf["algorithm"]),
                ),
                ciphertext=bytes.fromhex(data["ciphertext"]),
                tag=bytes.fromhex(data["tag"]),
                version=version,
                cipher_algorithm=str(cipher["algorithm"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptKeystore(f"Malformed keystore: {exc}", path=path) from exc

        keystore._validate(path)
        return keystore

    def _validate(self, path: str | None) -> None:
        problems = []
        if self.version < 1:
            problems.append(f"version {self.version}")
        if self.cipher_algorithm != CIPHER_ALGORITHM:
            problems.append(f"cipher {self.cipher_algorithm!r}")
        if self.kdf.algorithm != KDF_ALGORITHM:
            problems.append(f"kdf {self.kdf.algorithm!r}")
        if self.kdf.n < 2 or self.kdf.n & (self.kdf.n - 1):
            problems.append("scrypt n must be a power of two")
        if self.kdf.n > MAX_SCRYPT_N:
            problems.append(f"scrypt n above {MAX_SCRYPT_N}")
        if self.kdf.r < 1 or self.kdf.p < 1 or self.kdf.dklen != _KEY_LENGTH:
            problems.append("scrypt r/p/dklen out of range")
        elif self.kdf.r * self.kdf.p > MAX_SCRYPT_RP:
            problems.append("scrypt r * p too large")
        elif 128 * self.kdf.n * self.kdf.r > MAX_SCRYPT_MEMORY:
            problems.append("scrypt memory cost too large")
        if not self.kdf.salt:
            problems.append("empty salt")
        if len(self.iv) != _IV_LENGTH:
            problems.append("iv length")
        if len(self.ciphertext) != _KEY_LENGTH:
            problems.append("ciphertext length")
        if len(self.tag) != _TAG_LENGTH:
            problems.append("tag length")
        if problems:
            raise CorruptKeystore(
                "Invalid keystore parameters: " + ", ".join(problems), path=path,
            )


class KeystoreManager:
    """Creates, imports, encrypts and unlocks the single TruthStamp wallet."""

    def __init__(
        self,
        path: str | os.PathLike,
        scrypt_n: int = DEFAULT_SCRYPT_N,
        scrypt_r: int = DEFAULT_SCRYPT_R,
        scrypt_p: int = DEFAULT_SCRYPT_P,
    ):
        self.path = Path(path).expanduser()
        self.scrypt_n = scrypt_n
        self.scrypt_r = scrypt_r
        self.scrypt_p = scrypt_p

    # ---- key creation ----

    def create_keypair(self, with_recovery_phrase: bool = True) -> tuple[Wallet, str | None]:
        """
        Generate a fresh wallet.

        With *with_recovery_phrase* the key is derived from a new 12-word
        BIP-39 phrase, returned here once and never written anywhere by
        this class.
        """
        if with_recovery_phrase:
            phrase, wallet = Wallet.create_hd()
            return wallet, phrase
        return Wallet.create(), None

    def import_from_secret(self, secret: str) -> Wallet:
        return Wallet.from_private_key_hex(secret)

    # ---- persistence ----

    def exists(self) -> bool:
        return self.path.exists()

    def encrypt(self, wallet: Wallet, password: str) -> EncryptedKeystore:
        kdf = KDFParams(
            salt=os.urandom(_SALT_LENGTH),
            n=self.scrypt_n, r=self.scrypt_r, p=self.scrypt_p,
        )
        key = kdf.derive(password)
        iv = os.urandom(_IV_LENGTH)
        cipher = AES.new(key, AES.MODE_GCM, nonce=iv)
        cipher.update(_AAD)
        ciphertext, tag = cipher.encrypt_and_digest(wallet.private_key)
        return EncryptedKeystore(
            address=wallet.address, iv=iv, kdf=kdf, ciphertext=ciphertext, tag=tag,
        )

    def encrypt_and_persist(self, wallet: Wallet, password: str) -> EncryptedKeystore:
        keystore = self.encrypt(wallet, password)
        self._atomic_write(json.dumps(keystore.to_dict(), indent=2))
        logger.info(f"Keystore written for {wallet.address} at {self.path}")
        return keystore

    def load(self) -> EncryptedKeystore:
        """Read and parse the keystore file without decrypting it."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise KeystoreNotFound(
                "Keystore file not found; initialise a wallet first",
                path=str(self.path),
            ) from exc
        except OSError as exc:
            raise KeystoreIOError(f"Cannot read keystore: {exc}", path=str(self.path)) from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CorruptKeystore(f"Keystore is not valid JSON: {exc}", path=str(self.path)) from exc
        return EncryptedKeystore.from_dict(data, path=str(self.path))

    def stored_address(self) -> str:
        """Public address recorded in the keystore; no password needed."""
        return self.load().address

    def decrypt(self, keystore: EncryptedKeystore, password: str) -> Wallet:
        try:
            key = keystore.kdf.derive(password)
        except (ValueError, MemoryError) as exc:
            raise CorruptKeystore(
                f"Cannot derive key with the stored scrypt parameters: {exc}",
                path=str(self.path),
            ) from exc
        cipher = AES.new(key, AES.MODE_GCM, nonce=keystore.iv)
        cipher.update(_AAD)
        try:
            private_key = cipher.decrypt_and_verify(keystore.ciphertext, keystore.tag)
        except ValueError as exc:
            raise WrongPassword(
                "Wrong password or tampered keystore",
                path=str(self.path), address=keystore.address,
            ) from exc

        if not is_valid_private_key(private_key):
            raise CorruptKeystore("Decrypted key is not a valid secp256k1 key", path=str(self.path))
        wallet = Wallet(private_key)
        if not addresses_equal(wallet.address, keystore.address):
            wallet.wipe()
            raise CorruptKeystore(
                "Decrypted key does not match the stored address",
                path=str(self.path), address=keystore.address,
            )
        return wallet

    def decrypt_from_store(self, password: str) -> Wallet:
        wallet = self.decrypt(self.load(), password)
        logger.debug(f"Keystore unlocked for {wallet.address}")
        return wallet

    @contextlib.contextmanager
    def unlocked(self, password: str) -> Iterator[Wallet]:
        """Yield the decrypted wallet and wipe its key on exit."""
        wallet = self.decrypt_from_store(password)
        try:
            yield wallet
        finally:
            wallet.wipe()

    # ---- internals ----

    def _atomic_write(self, text: str) -> None:
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".tmp.", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
            tmp = None
            _fsync_directory(self.path.parent)
        except OSError as exc:
            raise KeystoreIOError(f"Cannot write keystore: {exc}", path=str(self.path)) from exc
        finally:
            if tmp is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp)


def _fsync_directory(directory: Path) -> None:
    """Flush a rename in *directory* to disk (no-op where unsupported)."""
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
