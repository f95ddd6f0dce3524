"""SiliconFlow Image MCP Server.

This package provides an MCP server for generating and editing images with
SiliconFlow models, saving the results to local files.
"""

from .config import ServiceConfig
from .core import (
    ImagePayload,
    ModelInfo,
    MockSiliconFlowService,
    SiliconFlowService,
    is_path_allowed,
    map_aspect_ratio_to_size,
)
from .files import (
    MAX_IMAGE_BYTES,
    FilesystemError,
    ImageFileStore,
    ImageSaveError,
    InvalidFormatError,
    InvalidInputError,
    PayloadTooLargeError,
    UnsupportedMimeTypeError,
    get_temp_dir,
    save_image_to_file,
)

__all__ = [name for name in locals() if not name.startswith("_")]

__version__ = "1.0.0"
