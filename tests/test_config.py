"""Unit tests for configuration resolution."""
# pylint: disable=missing-function-docstring

import os
import tempfile
import unittest
from unittest.mock import patch

from siliconflow_image_mcp import config


class OutputDirTests(unittest.TestCase):
    """Output directory fallback order."""

    def setUp(self):
        self.env_patch = patch.dict(os.environ, {}, clear=True)
        self.env_patch.start()

    def tearDown(self):
        self.env_patch.stop()

    def test_temp_dir_fallback(self):
        self.assertEqual(
            config.default_output_dir(), os.path.join(tempfile.gettempdir(), config.OUTPUT_SUBDIR)
        )

    def test_env_overrides_fallback(self):
        os.environ[config.OUTPUT_DIR_ENV] = "/srv/images"
        self.assertEqual(config.default_output_dir(), os.path.abspath("/srv/images"))

    def test_explicit_override_wins(self):
        os.environ[config.OUTPUT_DIR_ENV] = "/srv/images"
        self.assertEqual(config.default_output_dir("/data/out"), os.path.abspath("/data/out"))


class AllowedDirsTests(unittest.TestCase):
    """Default allow-list construction."""

    def test_default_order(self):
        dirs = config.default_allowed_dirs("/data/images")
        self.assertEqual(dirs[0], os.path.abspath("/data/images"))
        self.assertIn(os.getcwd(), dirs)
        self.assertIn(os.path.expanduser("~"), dirs)
        self.assertEqual(dirs[-1], tempfile.gettempdir())

    def test_no_duplicates(self):
        dirs = config.default_allowed_dirs(tempfile.gettempdir())
        self.assertEqual(len(dirs), len(set(dirs)))


class ServiceConfigTests(unittest.TestCase):
    """ServiceConfig.from_env."""

    def setUp(self):
        self.env_patch = patch.dict(os.environ, {}, clear=True)
        self.env_patch.start()

    def tearDown(self):
        self.env_patch.stop()

    def test_reads_environment(self):
        os.environ.update({
            config.API_KEY_ENV: " key ",
            config.API_URL_ENV: "https://proxy.example.com/v1/",
            config.IMAGE_DIR_ENV: "/data/in",
            config.OUTPUT_DIR_ENV: "/data/out",
            config.MOCK_ENV: "TRUE",
        })
        cfg = config.ServiceConfig.from_env()
        self.assertEqual(cfg.api_key, "key")
        self.assertEqual(cfg.base_url, "https://proxy.example.com/v1")
        self.assertEqual(cfg.output_dir, os.path.abspath("/data/out"))
        self.assertEqual(cfg.allowed_image_dirs[0], os.path.abspath("/data/in"))
        self.assertTrue(cfg.mock)

    def test_defaults(self):
        cfg = config.ServiceConfig.from_env()
        self.assertIsNone(cfg.api_key)
        self.assertEqual(cfg.base_url, config.DEFAULT_BASE_URL)
        self.assertFalse(cfg.mock)

    def test_explicit_allow_list(self):
        cfg = config.ServiceConfig.from_env(allowed_image_dirs=["/a", "/a", "/b"])
        self.assertEqual(cfg.allowed_image_dirs, (os.path.abspath("/a"), os.path.abspath("/b")))

    def test_is_immutable(self):
        cfg = config.ServiceConfig.from_env(api_key="k")
        with self.assertRaises(AttributeError):
            cfg.api_key = "other"  # type: ignore[misc]


if __name__ == "__main__":
    unittest.main()
