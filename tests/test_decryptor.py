import pytest
from Crypto.Cipher import AES

from conftest import encrypt
from livestream_dl.exceptions import DecryptionError
from livestream_dl.media.decryptor import Decryptor
from livestream_dl.models.segment import KeyReference, SegmentEntry

KEY = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
EXPLICIT_IV = bytes.fromhex("ffeeddccbbaa99887766554433221100")
PLAINTEXT = b"\x47" + bytes(range(256)) * 3


def entry(sequence: int, iv=None) -> SegmentEntry:
    return SegmentEntry(
        sequence=sequence,
        uri=f"seg{sequence}.ts",
        duration=2.0,
        key=KeyReference(uri="k1", iv=iv),
    )


class TestDecryptor:
    def test_implicit_iv_is_big_endian_sequence(self):
        assert KeyReference(uri="k").iv_for(258) == b"\x00" * 14 + b"\x01\x02"

    def test_implicit_iv_roundtrip(self):
        ciphertext = encrypt(PLAINTEXT, KEY, (7).to_bytes(16, "big"))
        assert Decryptor().decrypt(ciphertext, entry(7), KEY) == PLAINTEXT

    def test_explicit_iv_wins_over_sequence(self):
        ciphertext = encrypt(PLAINTEXT, KEY, EXPLICIT_IV)
        assert Decryptor().decrypt(ciphertext, entry(7, EXPLICIT_IV), KEY) == PLAINTEXT

    def test_explicit_and_implicit_iv_differ(self):
        ciphertext = encrypt(PLAINTEXT, KEY, EXPLICIT_IV)
        decryptor = Decryptor()

        with_explicit = decryptor.decrypt(ciphertext, entry(7, EXPLICIT_IV), KEY)
        try:
            with_implicit = decryptor.decrypt(ciphertext, entry(7), KEY)
        except DecryptionError:
            with_implicit = None

        assert with_explicit == PLAINTEXT
        assert with_implicit != with_explicit

    def test_wrong_sequence_breaks_first_block_only(self):
        ciphertext = encrypt(PLAINTEXT, KEY, (7).to_bytes(16, "big"))
        plaintext = Decryptor().decrypt(ciphertext, entry(8), KEY)
        assert plaintext[:16] != PLAINTEXT[:16]
        assert plaintext[16:] == PLAINTEXT[16:]

    def test_subrange_in_isolation_is_wrong(self):
        iv = (3).to_bytes(16, "big")
        ciphertext = encrypt(PLAINTEXT, KEY, iv)
        tail = ciphertext[64:]
        plaintext = Decryptor.decrypt_payload(tail, KEY, iv)
        assert plaintext[:16] != PLAINTEXT[64:80]

    def test_unencrypted_passthrough(self):
        plain = SegmentEntry(sequence=1, uri="a.ts", duration=2.0)
        assert Decryptor().decrypt(b"abc", plain, None) == b"abc"

    @pytest.mark.parametrize(
        ("data", "key", "iv"),
        [
            (b"x" * 15, KEY, EXPLICIT_IV),
            (b"", KEY, EXPLICIT_IV),
            (b"x" * 32, KEY[:8], EXPLICIT_IV),
            (b"x" * 32, KEY, EXPLICIT_IV[:4]),
        ],
    )
    def test_invalid_sizes(self, data, key, iv):
        with pytest.raises(DecryptionError):
            Decryptor.decrypt_payload(data, key, iv)

    def test_invalid_padding(self):
        # A block of zeros decrypts to a zero padding byte, which PKCS#7 forbids
        ciphertext = AES.new(KEY, AES.MODE_CBC, EXPLICIT_IV).encrypt(bytes(16))
        with pytest.raises(DecryptionError):
            Decryptor.decrypt_payload(ciphertext, KEY, EXPLICIT_IV)

    def test_missing_key_for_encrypted_entry(self):
        with pytest.raises(DecryptionError):
            Decryptor().decrypt(b"x" * 16, entry(1), None)

    def test_encrypted_init_section_needs_explicit_iv(self):
        with pytest.raises(DecryptionError):
            Decryptor().decrypt_init(b"x" * 16, KeyReference(uri="k"), KEY)
