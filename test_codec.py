from __future__ import annotations

import base64
import json
import unittest
import zlib

from Cryptodome.Cipher import AES
from Cryptodome.Util.Padding import unpad

from usersk7.codec import ArchiveCodec
from usersk7.constants import IV_SIZE
from usersk7.errors import (
    CodecError,
    CryptoError,
    DecompressFailedError,
    DecryptFailedError,
    EncryptFailedError,
    MalformedEncodingError,
    ParseFailedError,
    SerializeFailedError,
)
from usersk7.records import Record


def _sample_records():
    return [
        Record(
            key="alice",
            credential_hash="$P$BhashedAlice",
            email="alice@example.com",
            display_name="Alice A.",
            registered_at="2020-05-01 10:00:00",
            metadata={"capabilities": {"administrator": True}, "nickname": "al", "score": 3},
        ),
        Record(key="bob", credential_hash="$P$BhashedBob", description="multi\nline ✓"),
        Record(key="carol", metadata={}),
    ]


def _seal_raw(codec: ArchiveCodec, payload: bytes, password: str, *, compress: bool = True) -> bytes:
    body = codec.compress(payload) if compress else payload
    return codec.encryption.seal_text(body, password).encode("ascii")


class ArchiveCodecTests(unittest.TestCase):
    def setUp(self):
        self.codec = ArchiveCodec()

    def test_roundtrip_preserves_order_and_fields(self):
        records = _sample_records()
        data = self.codec.seal(records, "pw")
        self.assertEqual(records, self.codec.open(data, "pw"))

    def test_empty_archive_roundtrip(self):
        self.assertEqual([], self.codec.open(self.codec.seal([], "pw"), "pw"))

    def test_archive_layout(self):
        data = self.codec.seal(_sample_records(), "pw")
        raw = base64.b64decode(data, validate=True)
        iv, ct = raw[:IV_SIZE], raw[IV_SIZE:]
        self.assertEqual(0, len(ct) % 16)
        plain = unpad(AES.new(b"pw".ljust(32, b"\x00"), AES.MODE_CBC, iv=iv).decrypt(ct), 16)
        self.assertEqual(b"\x1f\x8b", plain[:2])  # gzip container
        payload = json.loads(zlib.decompress(plain, 31).decode("utf-8"))
        self.assertEqual(["alice", "bob", "carol"], [p["key"] for p in payload])
        self.assertEqual("$P$BhashedAlice", payload[0]["credentialHash"])

    def test_wrong_password_fails(self):
        data = self.codec.seal(_sample_records(), "right")
        with self.assertRaises((DecryptFailedError, DecompressFailedError, ParseFailedError)):
            self.codec.open(data, "wrong")

    def test_malformed_base64_before_decompression(self):
        with self.assertRaises(MalformedEncodingError):
            self.codec.open(b"%%% definitely not base64 %%%", "pw")

    def test_not_compressed(self):
        data = _seal_raw(self.codec, b'[{"key": "x"}]', "pw", compress=False)
        with self.assertRaises(DecompressFailedError):
            self.codec.open(data, "pw")

    def test_truncated_compressed_stream(self):
        body = self.codec.compress(json.dumps([{"key": "x" * 500}]).encode("utf-8"))
        data = self.codec.encryption.seal_text(body[: len(body) // 2], "pw").encode("ascii")
        with self.assertRaises(DecompressFailedError):
            self.codec.open(data, "pw")

    def test_trailing_bytes_after_stream_rejected(self):
        body = self.codec.compress(b'["x"]') + b"GARBAGE-TRAILER"
        data = self.codec.encryption.seal_text(body, "pw")
        with self.assertRaises(DecompressFailedError) as ctx:
            self.codec.open_payload(data, "pw")
        self.assertIn("trailing", str(ctx.exception))

    def test_zlib_stream_accepted(self):
        body = zlib.compress(b'[{"key": "zed"}]', 9)
        data = self.codec.encryption.seal_text(body, "pw")
        self.assertEqual("zed", self.codec.open(data, "pw")[0].key)

    def test_top_level_must_be_list(self):
        data = _seal_raw(self.codec, b'{"key": "alice"}', "pw")
        with self.assertRaises(ParseFailedError):
            self.codec.open(data, "pw")

    def test_invalid_json(self):
        data = _seal_raw(self.codec, b"[{not json", "pw")
        with self.assertRaises(ParseFailedError):
            self.codec.open(data, "pw")

    def test_unknown_fields_preserved(self):
        payload = [{"key": "dave", "credentialHash": "h", "futureField": {"a": 1}, "metadata": {"x": "y"}}]
        data = _seal_raw(self.codec, json.dumps(payload).encode("utf-8"), "pw")
        (rec,) = self.codec.open(data, "pw")
        self.assertEqual({"futureField": {"a": 1}}, rec.extra)
        self.assertEqual({"x": "y"}, rec.metadata)
        self.assertEqual({"a": 1}, rec.to_dict()["futureField"])
        again = self.codec.open(self.codec.seal([rec], "pw"), "pw")
        self.assertEqual([rec], again)

    def test_legacy_field_names(self):
        payload = [{
            "ID": "7",
            "user_login": "erin",
            "user_pass": "$P$Berin",
            "user_email": "erin@example.com",
            "user_registered": "2019-01-01 00:00:00",
            "user_meta_data": {"wp_capabilities": {"editor": True}},
        }]
        data = _seal_raw(self.codec, json.dumps(payload).encode("utf-8"), "pw")
        (rec,) = self.codec.open(data, "pw")
        self.assertEqual("erin", rec.key)
        self.assertEqual("$P$Berin", rec.credential_hash)
        self.assertEqual("erin@example.com", rec.email)
        self.assertEqual("2019-01-01 00:00:00", rec.registered_at)
        self.assertEqual({"wp_capabilities": {"editor": True}}, rec.metadata)
        self.assertEqual({"ID": "7"}, rec.extra)

    def test_non_object_entries_become_keyless_records(self):
        data = _seal_raw(self.codec, b'[42, "x", {"key": "ok"}]', "pw")
        records = self.codec.open(data, "pw")
        self.assertEqual(["", "", "ok"], [r.key for r in records])

    def test_open_payload_returns_raw_mappings(self):
        data = self.codec.seal(_sample_records()[:1], "pw")
        payload = self.codec.open_payload(data, "pw")
        self.assertIsInstance(payload[0], dict)
        self.assertEqual("alice", payload[0]["key"])

    def test_serialize_failure(self):
        bad = [Record(key="x", metadata={"obj": object()})]
        with self.assertRaises(SerializeFailedError):
            self.codec.seal(bad, "pw")

    def test_encrypt_failure_wraps_crypto_error(self):
        with self.assertRaises(EncryptFailedError) as ctx:
            self.codec.seal(_sample_records(), "")
        self.assertIsInstance(ctx.exception, CodecError)
        self.assertIsInstance(ctx.exception.__cause__, CryptoError)


if __name__ == "__main__":
    unittest.main()
