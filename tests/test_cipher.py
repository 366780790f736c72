import base64
import hashlib
import unittest

from cryptohub.errors import DecryptionFailed, InvalidInput
from cryptohub.security.cipher import (
    SALT,
    XorSecretCipher,
    decrypt,
    decrypt_credential_set,
    derive_key,
    encrypt,
    encrypt_credential_set,
)


class DeriveKeyTests(unittest.TestCase):
    def test_key_is_sha256_hex_of_user_and_salt(self):
        expected = hashlib.sha256(f"user-1_{SALT}".encode()).hexdigest().encode()
        self.assertEqual(derive_key("user-1"), expected)
        self.assertEqual(len(derive_key("user-1")), 64)

    def test_deterministic_per_user(self):
        self.assertEqual(derive_key("abc"), derive_key("abc"))
        self.assertNotEqual(derive_key("abc"), derive_key("abd"))


class EncryptDecryptTests(unittest.TestCase):
    def test_round_trip(self):
        for text in ["k", "mx0vglXYZ123", "s3cr3t/with+symbols=", "x" * 200, "ação-ñ-密钥"]:
            with self.subTest(text=text):
                self.assertEqual(decrypt(encrypt(text, "user-1"), "user-1"), text)

    def test_ciphertext_is_base64_of_xor(self):
        ct = encrypt("AB", "u")
        raw = base64.b64decode(ct)
        key = derive_key("u")
        self.assertEqual(bytes([raw[0] ^ key[0], raw[1] ^ key[1]]), b"AB")

    def test_key_repeats_past_its_length(self):
        text = "z" * 130
        raw = base64.b64decode(encrypt(text, "u"))
        key = derive_key("u")
        self.assertEqual(raw[0], raw[64])
        self.assertEqual(raw[1] ^ key[1], ord("z"))

    def test_same_input_same_output(self):
        self.assertEqual(encrypt("api-key", "u1"), encrypt("api-key", "u1"))
        self.assertNotEqual(encrypt("api-key", "u1"), encrypt("api-key", "u2"))

    def test_wrong_user_yields_garbage_without_error(self):
        ct = encrypt("my-api-secret", "alice")
        out = decrypt(ct, "bob")
        self.assertIsInstance(out, str)
        self.assertNotEqual(out, "my-api-secret")

    def test_empty_arguments_rejected(self):
        with self.assertRaises(InvalidInput):
            encrypt("", "u")
        with self.assertRaises(InvalidInput):
            encrypt("text", "")
        with self.assertRaises(InvalidInput):
            decrypt("", "u")
        with self.assertRaises(InvalidInput):
            decrypt("QUJD", "")

    def test_malformed_ciphertext(self):
        with self.assertRaises(DecryptionFailed):
            decrypt("not base64 at all!", "u")
        with self.assertRaises(DecryptionFailed):
            decrypt("QUJ", "u")

    def test_custom_salt_changes_output(self):
        other = XorSecretCipher(salt="another-salt")
        self.assertNotEqual(other.encrypt("abc", "u"), encrypt("abc", "u"))
        self.assertEqual(other.decrypt(other.encrypt("abc", "u"), "u"), "abc")


class CredentialSetTests(unittest.TestCase):
    def test_without_passphrase(self):
        enc = encrypt_credential_set("key", "secret", None, "u1")
        self.assertEqual(set(enc), {"api_key_encrypted", "api_secret_encrypted"})
        dec = decrypt_credential_set(enc["api_key_encrypted"], enc["api_secret_encrypted"], None, "u1")
        self.assertEqual(dec, {"api_key": "key", "api_secret": "secret"})

    def test_with_passphrase(self):
        enc = encrypt_credential_set("key", "secret", "phrase", "u1")
        self.assertIn("api_passphrase_encrypted", enc)
        dec = decrypt_credential_set(
            enc["api_key_encrypted"], enc["api_secret_encrypted"], enc["api_passphrase_encrypted"], "u1"
        )
        self.assertEqual(dec["passphrase"], "phrase")

    def test_each_field_encrypted_independently(self):
        enc = encrypt_credential_set("same", "same", "same", "u1")
        self.assertEqual(enc["api_key_encrypted"], encrypt("same", "u1"))
        self.assertEqual(enc["api_secret_encrypted"], enc["api_passphrase_encrypted"])


if __name__ == "__main__":
    unittest.main()
