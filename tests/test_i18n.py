"""
Tests for localized messages.
"""

import unittest

from music import errors
from music.i18n import available_locales, load_locales, t


def _error_keys():
    keys = set()
    for value in vars(errors).values():
        if isinstance(value, type) and issubclass(value, errors.MusicError):
            keys.add(value.key)
    return keys


class TestLocales(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        load_locales()

    def test_bundled_locales(self):
        self.assertEqual(available_locales(), ["en", "es"])

    def test_locales_share_keys(self):
        from music.i18n import _locales
        self.assertEqual(set(_locales["es"]), set(_locales["en"]))

    def test_every_error_has_a_message(self):
        for key in _error_keys():
            with self.subTest(key=key):
                self.assertNotEqual(t(key, "es"), key)
                self.assertNotEqual(t(key, "en"), key)

    def test_substitution(self):
        self.assertIn("42", t("volume_current", "en", level=42))

    def test_unknown_key_falls_back_to_key(self):
        self.assertEqual(t("does_not_exist", "en"), "does_not_exist")

    def test_unknown_locale_falls_back_to_spanish(self):
        self.assertEqual(t("paused", "fr"), t("paused", "es"))


if __name__ == "__main__":
    unittest.main()
