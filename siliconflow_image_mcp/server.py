"""MCP Server for SiliconFlow image generation.

This server exposes image generation and editing to AI agents via MCP.
Generated images are written to the configured output directory and their
paths are returned to the caller.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Literal, Optional

from fastmcp import FastMCP

from . import tools
from .config import API_KEY_ENV, LOG_LEVEL_ENV, MOCK_ENV, ServiceConfig
from .core import MockSiliconFlowService, SiliconFlowService
from .files import ImageFileStore

logger = logging.getLogger(__name__)

# Create the MCP server instance (logging configured at run-time to avoid deprecation)
mcp = FastMCP("SiliconFlow Image MCP")

AspectRatio = Literal["1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
ImageSize = Literal["1K", "2K", "4K"]


class _ServerState:  # pylint: disable=too-few-public-methods
    """Lazily built service and file store shared by all tool calls."""

    __slots__ = ("config", "service", "store")

    def __init__(self) -> None:
        self.config: Optional[ServiceConfig] = None
        self.service: Optional[SiliconFlowService] = None
        self.store: Optional[ImageFileStore] = None

    def configure(self, config: ServiceConfig) -> None:
        """Build the service and store from an explicit config."""
        self.config = config
        self.service = MockSiliconFlowService(config) if config.mock else SiliconFlowService(config)
        self.store = ImageFileStore(config.output_dir)

    def reset(self) -> None:
        self.config = None
        self.service = None
        self.store = None

    def ensure(self) -> None:
        if self.service is None or self.store is None:
            self.configure(ServiceConfig.from_env())


_state = _ServerState()


def _service() -> SiliconFlowService:
    _state.ensure()
    return _state.service  # type: ignore[return-value]


def _store() -> ImageFileStore:
    _state.ensure()
    return _state.store  # type: ignore[return-value]


def _not_configured(exc: ValueError) -> dict:
    return {"success": False, "error": f"{exc}. Set the {API_KEY_ENV} environment variable."}


@mcp.tool()
def generate_image(
    prompt: str,
    model: Optional[str] = None,
    aspect_ratio: Optional[AspectRatio] = None,
    image_size: Optional[ImageSize] = None,
    count: int = 1,
    negative_prompt: Optional[str] = None,
    seed: Optional[int] = None,
) -> dict:
    """Generate images using SiliconFlow's AI models.

    Supports aspect ratios, image sizes, negative prompts and seeds for
    reproducible results. Images are saved to files and their paths returned.

    Args:
        prompt: Detailed description of the image to generate (max 2000 characters).
        model: Model to use (defaults to black-forest-labs/FLUX.1-dev).
        aspect_ratio: Aspect ratio for generated images.
        image_size: Resolution hint ("1K", "2K", "4K").
        count: Number of images to generate (1-4).
        negative_prompt: What to avoid in the image.
        seed: Seed for reproducible results (0-9999999999).

    Returns:
        A dictionary containing:
        - success: Boolean indicating if at least one image was saved
        - saved_paths: Absolute paths of the saved images
        - errors: Per-image save failures (if any)
        - output_dir: Directory the images were saved to
        - error: Error message (if failed)
    """
    try:
        service, store = _service(), _store()
    except ValueError as exc:
        return _not_configured(exc)
    return tools.generate_images(
        service,
        store,
        prompt=prompt,
        model=model,
        aspect_ratio=aspect_ratio,
        image_size=image_size,
        count=count,
        negative_prompt=negative_prompt,
        seed=seed,
    )


@mcp.tool()
def edit_image(
    image: str,
    prompt: str,
    model: Optional[str] = None,
) -> dict:
    """Edit an existing image using SiliconFlow's AI models.

    Args:
        image: Base64 encoded image data, an image URL, a data URI, or a local
               file path inside the allowed directories.
        prompt: Instructions for editing the image (max 2000 characters).
        model: Model to use (defaults to Qwen/Qwen-Image-Edit-2509).

    Returns:
        A dictionary containing:
        - success: Boolean indicating if the edit succeeded
        - saved_path: Absolute path of the edited image (if successful)
        - error: Error message (if failed)
    """
    try:
        service, store = _service(), _store()
    except ValueError as exc:
        return _not_configured(exc)
    return tools.edit_image(service, store, image=image, prompt=prompt, model=model)


@mcp.tool()
def list_image_models() -> dict:
    """List all available image generation models from SiliconFlow.

    Returns:
        A dictionary containing:
        - success: Boolean indicating if the operation succeeded
        - models: List of image models with id, name and capabilities
        - count: Number of models found
        - error: Error message (if failed)
    """
    try:
        service = _service()
    except ValueError as exc:
        return _not_configured(exc)
    return tools.list_image_models(service)


def _configure_logging(level: str) -> None:
    # stdout carries the MCP stdio transport
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def resolve_log_level(value: Optional[str]) -> str:
    """Return a known logging level name, falling back to WARNING."""
    level = logging.getLevelName((value or "WARNING").strip().upper())
    if not isinstance(level, int):
        return "WARNING"
    return logging.getLevelName(level)


def main() -> None:
    """Run the MCP server via stdio."""
    raw_level = os.getenv(LOG_LEVEL_ENV)
    log_level = resolve_log_level(raw_level)
    _configure_logging(log_level)
    if raw_level and not isinstance(logging.getLevelName(raw_level.strip().upper()), int):
        logger.warning("Unknown %s value %r, using WARNING", LOG_LEVEL_ENV, raw_level)

    config = ServiceConfig.from_env()
    if not config.api_key and not config.mock:
        logger.error(
            "%s environment variable is required (or set %s=true for mock mode)", API_KEY_ENV, MOCK_ENV
        )
        sys.exit(1)

    _state.configure(config)
    if config.mock:
        logger.warning("Running in MOCK mode - API calls will be simulated")
    elif not _state.service.test_connection():  # type: ignore[union-attr]
        logger.error("Failed to connect to SiliconFlow. Please check your API key.")
        sys.exit(1)

    logger.info("Saving images to %s", config.output_dir)
    mcp.run(show_banner=False, log_level=log_level)


# Entry point for running the server
if __name__ == "__main__":
    main()
