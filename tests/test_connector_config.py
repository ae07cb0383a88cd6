import json
import os
import shutil
import tempfile
import unittest

from connector_config import (
    DEFAULT_OPTIONS,
    ConfigError,
    Settings,
    load_settings,
    normalize_engine_path,
    run_setup_wizard,
    save_settings,
)
from remote_link import DEFAULT_SERVER_URL


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.tmpdir, "config.json")

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def write_json(self, data) -> None:
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(data, f)


class TestLoadSettings(ConfigTestCase):

    def test_load_full_settings(self):
        self.write_json({
            "enginePath": "/opt/shogi/engine",
            "apiKey": "key",
            "serverUrl": "http://localhost:3000",
            "engineOptions": {"USI_Hash": 256, "Threads": 2},
        })
        settings = load_settings(self.config_path)
        self.assertEqual(settings.engine_path, "/opt/shogi/engine")
        self.assertEqual(settings.api_key, "key")
        self.assertEqual(settings.server_url, "http://localhost:3000")
        self.assertEqual(list(settings.engine_options), ["USI_Hash", "Threads"])

    def test_server_url_defaults(self):
        self.write_json({"enginePath": "/opt/shogi/engine", "apiKey": "key"})
        settings = load_settings(self.config_path)
        self.assertIsNone(settings.server_url)
        self.assertEqual(settings.connection_config().url, DEFAULT_SERVER_URL)
        self.assertEqual(settings.engine_options, {})

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_settings(self.config_path)

    def test_invalid_json(self):
        with open(self.config_path, "w") as f:
            f.write("{not json")
        with self.assertRaises(ConfigError):
            load_settings(self.config_path)

    def test_not_an_object(self):
        self.write_json(["enginePath"])
        with self.assertRaises(ConfigError):
            load_settings(self.config_path)

    def test_missing_api_key(self):
        self.write_json({"enginePath": "/opt/shogi/engine"})
        with self.assertRaisesRegex(ConfigError, "apiKey"):
            load_settings(self.config_path)

    def test_options_must_be_object(self):
        self.write_json({"enginePath": "/e", "apiKey": "k", "engineOptions": [1, 2]})
        with self.assertRaises(ConfigError):
            load_settings(self.config_path)


class TestSaveSettings(ConfigTestCase):

    def test_round_trip_keeps_keys_and_order(self):
        settings = Settings(engine_path="/opt/shogi/engine", api_key="key")
        save_settings(settings, self.config_path)

        with open(self.config_path, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data, {
            "enginePath": "/opt/shogi/engine",
            "apiKey": "key",
            "engineOptions": DEFAULT_OPTIONS,
        })
        self.assertEqual(load_settings(self.config_path), settings)

    def test_unwritable_path_raises_config_error(self):
        settings = Settings(engine_path="/e", api_key="k")
        path = os.path.join(self.tmpdir, "missing-dir", "config.json")
        with self.assertRaisesRegex(ConfigError, "could not write"):
            save_settings(settings, path)

    def test_server_url_written_when_set(self):
        settings = Settings(engine_path="/e", api_key="k", server_url="http://x")
        save_settings(settings, self.config_path)
        self.assertEqual(load_settings(self.config_path).server_url, "http://x")


class TestDerivedConfigs(unittest.TestCase):

    def test_engine_config(self):
        settings = Settings(engine_path="/opt/shogi/engine", api_key="key")
        config = settings.engine_config()
        self.assertEqual(config.path, os.path.abspath("/opt/shogi/engine"))
        self.assertEqual(dict(config.options), DEFAULT_OPTIONS)

    def test_connection_config(self):
        settings = Settings(engine_path="/e", api_key="key", server_url="http://x")
        config = settings.connection_config()
        self.assertEqual(config.url, "http://x")
        self.assertEqual(config.token, "key")

    def test_default_options_not_shared(self):
        a = Settings(engine_path="/e", api_key="k")
        a.engine_options["Threads"] = 16
        b = Settings(engine_path="/e", api_key="k")
        self.assertEqual(b.engine_options["Threads"], 4)


class TestNormalizeEnginePath(unittest.TestCase):

    def test_strips_drag_and_drop_quotes(self):
        self.assertEqual(normalize_engine_path('"C:\\Shogi\\engine.exe"\n'), "C:/Shogi/engine.exe")

    def test_plain_path(self):
        self.assertEqual(normalize_engine_path("  /opt/engine "), "/opt/engine")

    def test_single_quotes(self):
        self.assertEqual(normalize_engine_path("'/opt/my engine'"), "/opt/my engine")


class TestSetupWizard(ConfigTestCase):

    def test_reprompts_until_valid_then_saves(self):
        engine_path = os.path.join(self.tmpdir, "engine")
        with open(engine_path, "w") as f:
            f.write("")

        answers = iter(["", "  key  ", "/does/not/exist", f'"{engine_path}"'])
        messages: list[str] = []

        with self.assertLogs("connector_config", level="INFO"):
            settings = run_setup_wizard(
                self.config_path, ask=lambda prompt: next(answers), say=messages.append,
            )

        self.assertEqual(settings.api_key, "key")
        self.assertEqual(settings.engine_path, engine_path)
        self.assertEqual(settings.engine_options, DEFAULT_OPTIONS)
        self.assertTrue(any(m.startswith("Error") for m in messages))
        self.assertEqual(load_settings(self.config_path), settings)


if __name__ == "__main__":
    unittest.main()
