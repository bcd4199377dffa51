"""Cache stores — Encrypted persistent cache and session index.

Security Note (Threat Model):
    The persistent cache is encrypted with a key derived from the user's
    password and holds metadata only. The session index is encrypted with
    a random per-process key and may hold secret values. Both are decrypted
    in process memory while in use: a memory dump of the running process
    exposes the session key, the derived cache key and any decrypted
    record. This is an accepted limitation; the in-memory encryption only
    keeps plaintext out of swap-scraping and casual inspection.
"""

from .crypto import derive_key, encrypt, decrypt, generate_salt, generate_iv
from .persistent import PersistentVaultCache
from .ephemeral import EphemeralSessionIndex

__all__ = [
    "PersistentVaultCache",
    "EphemeralSessionIndex",
    "derive_key",
    "encrypt",
    "decrypt",
    "generate_salt",
    "generate_iv",
]
