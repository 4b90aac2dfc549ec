import unittest
from unittest.mock import patch

from env_validation import ConfigurationError, TutorSettings, validate_environment


class EnvironmentValidationTests(unittest.TestCase):
    def test_defaults_without_keys(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = validate_environment()
            self.assertEqual(settings.db_path, "data.db")
        self.assertFalse(settings.has_openai)
        self.assertFalse(settings.has_anthropic)
        self.assertEqual(settings.timeout_seconds, 30.0)
        self.assertEqual(settings.max_tokens, 500)
        self.assertEqual(settings.history_window, 8)
        self.assertEqual(settings.openai_model, "gpt-4o-mini")
        self.assertEqual(settings.anthropic_fallback_model, "claude-3-5-sonnet-20241022")

    def test_claude_key_alias(self):
        with patch.dict("os.environ", {"CLAUDE_API_KEY": "ck"}, clear=True):
            settings = TutorSettings.from_env()
        self.assertEqual(settings.anthropic_api_key, "ck")
        self.assertTrue(settings.has_anthropic)

    def test_invalid_numbers_fall_back_to_defaults(self):
        with patch.dict("os.environ", {"LLM_TIMEOUT": "soon", "HISTORY_WINDOW": "many"}, clear=True):
            settings = TutorSettings.from_env()
        self.assertEqual(settings.timeout_seconds, 30.0)
        self.assertEqual(settings.history_window, 8)

    def test_rejects_bad_url(self):
        with patch.dict("os.environ", {"OPENAI_BASE_URL": "api.openai.com"}, clear=True):
            with self.assertRaises(ConfigurationError):
                validate_environment()

    def test_rejects_non_positive_timeout(self):
        with patch.dict("os.environ", {"LLM_TIMEOUT": "0"}, clear=True):
            with self.assertRaises(ConfigurationError):
                validate_environment()

    def test_rejects_unknown_classifier_variant(self):
        with patch.dict("os.environ", {"CLASSIFIER_VARIANT": "lenient"}, clear=True):
            with self.assertRaises(ConfigurationError):
                validate_environment()

    def test_rejects_missing_rules_file(self):
        with patch.dict("os.environ", {"CLASSIFIER_RULES_PATH": "/nonexistent/rules.json"}, clear=True):
            with self.assertRaises(ConfigurationError):
                validate_environment()


if __name__ == "__main__":
    unittest.main()
