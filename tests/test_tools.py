"""Unit tests for the tool handlers."""
# pylint: disable=missing-function-docstring

import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from siliconflow_image_mcp import tools
from siliconflow_image_mcp.config import ServiceConfig
from siliconflow_image_mcp.core import (
    MOCK_IMAGE_BASE64,
    ImagePayload,
    MockSiliconFlowService,
    ModelInfo,
    SiliconFlowService,
)
from siliconflow_image_mcp.files import ImageFileStore


class _ToolTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        out_dir = str(Path(self.tmp.name) / "out")
        self.service = MockSiliconFlowService(ServiceConfig(output_dir=out_dir))
        self.store = ImageFileStore(out_dir)

    def tearDown(self):
        self.tmp.cleanup()


class GenerateToolTests(_ToolTestCase):
    """generate_image handler."""

    def test_saves_every_image(self):
        result = tools.generate_images(self.service, self.store, prompt="a fox", count=3)
        self.assertTrue(result["success"])
        self.assertEqual(result["count"], 3)
        self.assertEqual(len(set(result["saved_paths"])), 3)
        for index, path in enumerate(result["saved_paths"], start=1):
            self.assertTrue(Path(path).exists())
            self.assertTrue(Path(path).name.startswith(f"generated_{index}_"))
        self.assertNotIn("errors", result)

    def test_passes_defaults_to_service(self):
        service = MagicMock()
        service.generate_image.return_value = [ImagePayload(data=MOCK_IMAGE_BASE64)]
        tools.generate_images(service, self.store, prompt="a fox", aspect_ratio="16:9", seed=0)
        service.generate_image.assert_called_once_with(
            "a fox", "black-forest-labs/FLUX.1-dev", "16:9", None, 1, None, 0
        )

    def test_invalid_input(self):
        cases = [
            {"prompt": ""},
            {"prompt": "x" * 2001},
            {"prompt": "ok", "aspect_ratio": "7:3"},
            {"prompt": "ok", "image_size": "8K"},
            {"prompt": "ok", "count": 0},
            {"prompt": "ok", "count": 5},
            {"prompt": "ok", "count": True},
            {"prompt": "ok", "seed": -1},
            {"prompt": "ok", "seed": 10_000_000_000},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs):
                result = tools.generate_images(self.service, self.store, **kwargs)
                self.assertFalse(result["success"])
                self.assertTrue(result["error"].startswith("Invalid input:"))

    def test_invalid_input_lists_all_problems(self):
        with self.assertRaises(tools.InvalidToolInput) as ctx:
            tools.validate_generate_args("", aspect_ratio="7:3", count=9)
        self.assertEqual(len(ctx.exception.problems), 3)

    def test_partial_success_reported(self):
        service = MagicMock()
        service.generate_image.return_value = [
            ImagePayload(data=MOCK_IMAGE_BASE64),
            ImagePayload(data=MOCK_IMAGE_BASE64, mime_type="image/gif"),
            ImagePayload(data="!!!"),
        ]
        result = tools.generate_images(service, self.store, prompt="a fox", count=3)
        self.assertTrue(result["success"])
        self.assertEqual(result["count"], 1)
        self.assertEqual(result["requested"], 3)
        self.assertEqual(
            [(e["index"], e["error_type"]) for e in result["errors"]],
            [(2, "UnsupportedMimeTypeError"), (3, "InvalidFormatError")],
        )

    def test_all_saves_failing_is_failure(self):
        service = MagicMock()
        service.generate_image.return_value = [ImagePayload(data="", mime_type="image/png")]
        result = tools.generate_images(service, self.store, prompt="a fox")
        self.assertFalse(result["success"])
        self.assertEqual(result["errors"][0]["error_type"], "InvalidInputError")

    def test_no_images(self):
        service = MagicMock()
        service.generate_image.return_value = []
        result = tools.generate_images(service, self.store, prompt="a fox")
        self.assertFalse(result["success"])

    def test_service_error(self):
        service = MagicMock()
        service.generate_image.side_effect = RuntimeError("Image generation failed: API error (500): boom")
        result = tools.generate_images(service, self.store, prompt="a fox")
        self.assertEqual(result, {"success": False, "error": "Image generation failed: API error (500): boom"})

    def test_upstream_file_url_is_not_read(self):
        secret = Path(self.tmp.name) / "secret.txt"
        secret.write_bytes(b"host file")
        service = SiliconFlowService(ServiceConfig(api_key="k", output_dir=str(Path(self.tmp.name) / "out")))
        with patch("siliconflow_image_mcp.core._http_request_json", return_value={"images": [{"url": secret.as_uri()}]}):
            result = tools.generate_images(service, self.store, prompt="a fox")
        self.assertFalse(result["success"])
        self.assertIn("non-HTTP", result["error"])
        self.assertFalse((Path(self.tmp.name) / "out").exists())

    def test_malformed_upstream_response_is_error_dict(self):
        service = SiliconFlowService(ServiceConfig(api_key="k"))
        with patch("siliconflow_image_mcp.core._http_request_json", return_value=["not", "a", "dict"]):
            result = tools.generate_images(service, self.store, prompt="a fox")
        self.assertEqual(result, {"success": False, "error": "Image generation failed: Unexpected API response format"})


class EditToolTests(_ToolTestCase):
    """edit_image handler."""

    def test_saves_edited_image(self):
        result = tools.edit_image(self.service, self.store, image="https://x/in.png", prompt="make it blue")
        self.assertTrue(result["success"])
        self.assertTrue(Path(result["saved_path"]).name.startswith("edited_"))
        self.assertTrue(Path(result["saved_path"]).exists())

    def test_invalid_input(self):
        result = tools.edit_image(self.service, self.store, image="", prompt="")
        self.assertFalse(result["success"])
        self.assertIn("Image data is required", result["error"])
        self.assertIn("Edit prompt is required", result["error"])

    def test_save_failure_reported(self):
        service = MagicMock()
        service.edit_image.return_value = ImagePayload(data=MOCK_IMAGE_BASE64, mime_type="text/html")
        result = tools.edit_image(service, self.store, image="AAAA", prompt="x")
        self.assertFalse(result["success"])
        self.assertIn("Unsupported MIME type", result["error"])


class ListModelsToolTests(_ToolTestCase):
    """list_image_models handler."""

    def test_lists_models(self):
        result = tools.list_image_models(self.service)
        self.assertTrue(result["success"])
        self.assertEqual(result["count"], 1)
        self.assertEqual(result["models"][0]["output_modalities"], ["image"])

    def test_empty_listing_is_error(self):
        service = MagicMock()
        service.list_image_models.return_value = []
        self.assertFalse(tools.list_image_models(service)["success"])

    def test_model_info_shape(self):
        service = MagicMock()
        service.list_image_models.return_value = [ModelInfo(id="a/flux", name="a/flux")]
        models = tools.list_image_models(service)["models"]
        self.assertEqual(models[0]["id"], "a/flux")


if __name__ == "__main__":
    unittest.main()
