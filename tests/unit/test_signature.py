"""Unit tests for webhook signature verification."""

from shiplog.security.signature import SIGNATURE_PREFIX, sign, verify

BODY = b'{"action":"published","release":{"tag_name":"v1.2.0"}}'
SECRET = "whsec-test"


class TestSign:
    def test_prefix_and_hex_digest(self):
        signature = sign(BODY, SECRET)
        assert signature.startswith(SIGNATURE_PREFIX)
        assert len(signature) == len(SIGNATURE_PREFIX) + 64

    def test_known_vector(self):
        # GitHub's documented example
        signature = sign(b"Hello, World!", "It's a Secret to Everybody")
        assert signature == "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"


class TestVerify:
    def test_round_trip(self):
        assert verify(BODY, sign(BODY, SECRET), SECRET) is True

    def test_wrong_secret(self):
        assert verify(BODY, sign(BODY, "other"), SECRET) is False

    def test_single_bit_mutations_rejected(self):
        for i in range(len(BODY)):
            for bit in (0x01, 0x80):
                mutated = bytearray(BODY)
                mutated[i] ^= bit
                assert verify(bytes(mutated), sign(BODY, SECRET), SECRET) is False

    def test_signature_char_mutations_rejected(self):
        signature = sign(BODY, SECRET)
        for i in range(len(SIGNATURE_PREFIX), len(signature)):
            replacement = "0" if signature[i] != "0" else "1"
            mutated = signature[:i] + replacement + signature[i + 1:]
            assert verify(BODY, mutated, SECRET) is False

    def test_missing_signature(self):
        assert verify(BODY, None, SECRET) is False
        assert verify(BODY, "", SECRET) is False

    def test_missing_secret(self):
        assert verify(BODY, sign(BODY, SECRET), "") is False

    def test_wrong_prefix(self):
        digest = sign(BODY, SECRET)[len(SIGNATURE_PREFIX):]
        assert verify(BODY, "sha1=" + digest, SECRET) is False
        assert verify(BODY, digest, SECRET) is False

    def test_non_ascii_signature(self):
        assert verify(BODY, "sha256=ünïcødé", SECRET) is False

    def test_truncated_signature(self):
        assert verify(BODY, sign(BODY, SECRET)[:-2], SECRET) is False
