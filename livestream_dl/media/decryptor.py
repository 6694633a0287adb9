"""
AES-128-CBC decryption of whole segment payloads.
"""

import asyncio
import logging
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from livestream_dl.exceptions import DecryptionError
from livestream_dl.models.segment import AES_BLOCK_SIZE, KeyReference, SegmentEntry

log = logging.getLogger(__name__)


class Decryptor:
    """
    Decrypts segments encrypted with METHOD=AES-128.

    CBC chaining starts at the first byte of a segment, so only complete
    payloads are decrypted; a byte-range sub-segment is decrypted after its
    bytes are fetched as a whole, never in isolation from a later offset.
    """

    @staticmethod
    def decrypt_payload(data: bytes, key: bytes, iv: bytes) -> bytes:
        if len(key) != AES_BLOCK_SIZE:
            raise DecryptionError(f"Key must be {AES_BLOCK_SIZE} bytes, got {len(key)}.")
        if len(iv) != AES_BLOCK_SIZE:
            raise DecryptionError(f"IV must be {AES_BLOCK_SIZE} bytes, got {len(iv)}.")
        if not data or len(data) % AES_BLOCK_SIZE:
            raise DecryptionError(
                f"Ciphertext length {len(data)} is not a positive multiple of {AES_BLOCK_SIZE}."
            )
        cipher = AES.new(key, AES.MODE_CBC, iv)
        try:
            return unpad(cipher.decrypt(data), AES_BLOCK_SIZE, style="pkcs7")
        except ValueError as e:
            raise DecryptionError(f"Invalid padding: {e}") from e

    def decrypt(self, data: bytes, entry: SegmentEntry, key: Optional[bytes]) -> bytes:
        """
        Decrypts the payload of `entry`. Unencrypted entries pass through.

        The IV is the explicit one from the key directive, otherwise the
        segment's media sequence number as a 16-byte big-endian integer.
        """
        if entry.key is None:
            return data
        if key is None:
            raise DecryptionError(f"No key resolved for encrypted segment {entry.sequence}.")
        return self.decrypt_payload(data, key, entry.key.iv_for(entry.sequence))

    def decrypt_init(self, data: bytes, key_ref: Optional[KeyReference], key: Optional[bytes]) -> bytes:
        """Decrypts an initialization section, which always carries an explicit IV."""
        if key_ref is None:
            return data
        if key is None or key_ref.iv is None:
            raise DecryptionError("Encrypted init section needs a key and an explicit IV.")
        return self.decrypt_payload(data, key, key_ref.iv)

    async def decrypt_async(
        self, data: bytes, entry: SegmentEntry, key: Optional[bytes]
    ) -> bytes:
        """Runs `decrypt` on a worker thread."""
        if entry.key is None:
            return data
        return await asyncio.to_thread(self.decrypt, data, entry, key)
