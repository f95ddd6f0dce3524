"""Tool handlers behind the MCP tools.

Each handler validates its arguments, calls the service, saves any returned
images through the file store and returns a JSON-serialisable dictionary. They
never raise for expected failures; errors come back as
``{"success": False, "error": ...}``.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .core import DEFAULT_EDIT_MODEL, DEFAULT_GENERATE_MODEL, SiliconFlowService
from .files import ImageFileStore, ImageSaveError

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 2000
MAX_COUNT = 4
MAX_SEED = 9999999999
ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")
IMAGE_SIZES = ("1K", "2K", "4K")


class InvalidToolInput(ValueError):
    """Raised when tool arguments fail validation."""

    def __init__(self, problems: List[str]) -> None:
        self.problems = problems
        super().__init__(f"Invalid input: {', '.join(problems)}")


def _check_prompt(prompt: Any, label: str, problems: List[str]) -> None:
    if not isinstance(prompt, str) or not prompt:
        problems.append(f"{label} is required")
    elif len(prompt) > MAX_PROMPT_LENGTH:
        problems.append(f"{label} must be {MAX_PROMPT_LENGTH} characters or less")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_generate_args(
    prompt: Any,
    aspect_ratio: Optional[str] = None,
    image_size: Optional[str] = None,
    count: Any = 1,
    seed: Any = None,
) -> None:
    """Raise InvalidToolInput listing every problem with generate arguments."""
    problems: List[str] = []
    _check_prompt(prompt, "Prompt", problems)
    if aspect_ratio is not None and aspect_ratio not in ASPECT_RATIOS:
        problems.append(f"Aspect ratio must be one of {', '.join(ASPECT_RATIOS)}")
    if image_size is not None and image_size not in IMAGE_SIZES:
        problems.append(f"Image size must be one of {', '.join(IMAGE_SIZES)}")
    if not _is_int(count) or not 1 <= count <= MAX_COUNT:
        problems.append(f"Count must be an integer between 1 and {MAX_COUNT}")
    if seed is not None and (not _is_int(seed) or not 0 <= seed <= MAX_SEED):
        problems.append(f"Seed must be an integer between 0 and {MAX_SEED}")
    if problems:
        raise InvalidToolInput(problems)


def validate_edit_args(image: Any, prompt: Any) -> None:
    """Raise InvalidToolInput listing every problem with edit arguments."""
    problems: List[str] = []
    if not isinstance(image, str) or not image:
        problems.append("Image data is required")
    _check_prompt(prompt, "Edit prompt", problems)
    if problems:
        raise InvalidToolInput(problems)


def _wrap_tool(fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    """Execute a tool handler and normalize common error handling."""
    try:
        return fn()
    except (ValueError, RuntimeError, OSError, ImageSaveError) as exc:
        logger.warning("Tool call failed: %s", exc)
        return {"success": False, "error": str(exc)}


def generate_images(
    service: SiliconFlowService,
    store: ImageFileStore,
    *,
    prompt: str,
    model: Optional[str] = None,
    aspect_ratio: Optional[str] = None,
    image_size: Optional[str] = None,
    count: int = 1,
    negative_prompt: Optional[str] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """Generate images and save each one under the store's output directory.

    Images that fail to save are reported under ``errors``; the call only
    fails outright when no image could be saved.
    """
    def _run() -> Dict[str, Any]:
        validate_generate_args(prompt, aspect_ratio, image_size, count, seed)
        images = service.generate_image(
            prompt,
            model or DEFAULT_GENERATE_MODEL,
            aspect_ratio,
            image_size,
            count,
            negative_prompt,
            seed,
        )
        if not images:
            return {"success": False, "error": "No images were generated. Please try a different prompt."}

        saved_paths: List[str] = []
        errors: List[Dict[str, Any]] = []
        for index, image in enumerate(images, start=1):
            try:
                saved_paths.append(store.save(image.data, f"generated_{index}", image.mime_type))
            except ImageSaveError as exc:
                logger.warning("Could not save generated image %d: %s", index, exc)
                errors.append({"index": index, "error": str(exc), "error_type": type(exc).__name__})

        payload: Dict[str, Any] = {
            "success": bool(saved_paths),
            "prompt": prompt,
            "saved_paths": saved_paths,
            "count": len(saved_paths),
            "requested": len(images),
            "output_dir": store.output_dir,
        }
        if errors:
            payload["errors"] = errors
        if not saved_paths:
            payload["error"] = f"None of the {len(images)} generated images could be saved."
        return payload

    return _wrap_tool(_run)


def edit_image(
    service: SiliconFlowService,
    store: ImageFileStore,
    *,
    image: str,
    prompt: str,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit an image and save the result."""
    def _run() -> Dict[str, Any]:
        validate_edit_args(image, prompt)
        edited = service.edit_image(image, prompt, model or DEFAULT_EDIT_MODEL)
        saved_path = store.save(edited.data, "edited", edited.mime_type)
        return {
            "success": True,
            "prompt": prompt,
            "saved_path": saved_path,
            "mime_type": edited.mime_type,
            "output_dir": store.output_dir,
        }

    return _wrap_tool(_run)


def list_image_models(service: SiliconFlowService) -> Dict[str, Any]:
    """List the image models available to the configured API key."""
    def _run() -> Dict[str, Any]:
        models = service.list_image_models()
        if not models:
            return {
                "success": False,
                "error": "No image generation models found. This might be a temporary issue with the API.",
            }
        return {
            "success": True,
            "models": [
                {
                    "id": m.id,
                    "name": m.name,
                    "description": m.description,
                    "output_modalities": list(m.output_modalities),
                }
                for m in models
            ],
            "count": len(models),
            "recommended": {"generate": DEFAULT_GENERATE_MODEL, "edit": DEFAULT_EDIT_MODEL},
        }

    return _wrap_tool(_run)
