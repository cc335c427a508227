"""
Issuer keyring and Ed25519 helper tests.
"""

import json
import os
import tempfile
import unittest

from trustcore import FileKeyring, InMemoryKeyring, generate_issuer_keypair
from trustcore.keys import sign_ed25519, verify_ed25519


class TestSignatures(unittest.TestCase):

    def setUp(self):
        self.private_key, self.public_key = generate_issuer_keypair()

    def test_sign_and_verify(self):
        signature = sign_ed25519(b"claim body", self.private_key)
        self.assertTrue(verify_ed25519(signature, b"claim body", self.public_key))
        self.assertFalse(verify_ed25519(signature, b"claim body!", self.public_key))

    def test_wrong_key_and_garbage(self):
        _, other_public = generate_issuer_keypair()
        signature = sign_ed25519(b"claim body", self.private_key)
        self.assertFalse(verify_ed25519(signature, b"claim body", other_public))
        self.assertFalse(verify_ed25519("not-base64!", b"claim body", self.public_key))
        self.assertFalse(verify_ed25519(signature, b"claim body", "AAAA"))

    def test_keyring_verify(self):
        keyring = InMemoryKeyring({"notary": self.public_key})
        signature = sign_ed25519(b"payload", self.private_key)
        self.assertTrue(keyring.verify("notary", b"payload", signature))
        self.assertFalse(keyring.verify("stranger", b"payload", signature))


class TestFileKeyring(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "trust_store.json")

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, issuers, mtime):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"issuers": issuers}, f)
        os.utime(self.path, (mtime, mtime))

    def test_reloads_on_modification(self):
        _, key_a = generate_issuer_keypair()
        _, key_b = generate_issuer_keypair()
        self.write({"notary-a": key_a}, 1_000_000)
        keyring = FileKeyring(self.path)
        self.assertEqual(keyring.public_key("notary-a"), key_a)
        self.assertIsNone(keyring.public_key("notary-b"))

        self.write({"notary-a": key_a, "notary-b": key_b}, 1_000_100)
        self.assertEqual(keyring.issuers(), {"notary-a": key_a, "notary-b": key_b})

    def test_keeps_last_good_copy_when_file_disappears(self):
        _, key_a = generate_issuer_keypair()
        self.write({"notary-a": key_a}, 1_000_000)
        keyring = FileKeyring(self.path)
        keyring.issuers()
        os.remove(self.path)
        self.assertEqual(keyring.public_key("notary-a"), key_a)

    def test_missing_file_on_first_load(self):
        keyring = FileKeyring(self.path)
        with self.assertRaises(FileNotFoundError):
            keyring.public_key("notary-a")


if __name__ == "__main__":
    unittest.main()
