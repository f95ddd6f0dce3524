"""SiliconFlow API client and local input-path authorization.

This module provides:
- The path guard deciding whether a local file may be read as an input image
- Image generation and editing via SiliconFlow's ``/images/generations`` endpoint
- Model discovery and connection checks

HTTP is done with the standard library (``urllib``) only.
"""
from __future__ import annotations

import base64
import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib import error, parse, request

from .config import ServiceConfig
from .files import MAX_IMAGE_BYTES

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"
DEFAULT_GENERATE_MODEL = "black-forest-labs/FLUX.1-dev"
DEFAULT_EDIT_MODEL = "Qwen/Qwen-Image-Edit-2509"
MAX_BATCH_SIZE = 4

EXTENSION_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}

# Substrings identifying image models in the /models listing
IMAGE_MODEL_KEYWORDS = [
    "flux",
    "sd",
    "stable-diffusion",
    "qwen-image",
    "kolors",
    "dall",
    "painting",
]

QWEN_SIZES = {
    "1:1": "1328x1328",
    "16:9": "1664x928",
    "9:16": "928x1664",
    "4:3": "1472x1140",
    "3:4": "1140x1472",
    "3:2": "1584x1056",
    "2:3": "1056x1584",
}

KOLORS_SIZES = {
    "1:1": "1024x1024",
    "3:4": "960x1280",
    "4:3": "1280x960",
    "1:2": "720x1440",
    "9:16": "720x1280",
    "16:9": "1280x720",
}

IMAGE_SIZE_DEFAULTS = {
    "4K": "2048x2048",
    "2K": "1536x1536",
}
DEFAULT_IMAGE_SIZE = "1024x1024"


@dataclass
class ImagePayload:
    """Base64 image data plus its declared MIME type."""
    data: str
    mime_type: str = DEFAULT_MIME_TYPE
    source_url: Optional[str] = None


@dataclass
class ModelInfo:
    """Information about an available model."""
    id: str
    name: str
    description: str = ""
    output_modalities: List[str] = field(default_factory=lambda: ["image"])


def _resolve(path: str) -> Path:
    # realpath follows symlinks without requiring the path to exist
    return Path(os.path.normcase(os.path.realpath(os.path.expanduser(path))))


def is_path_allowed(candidate: object, allowed_dirs: Iterable[str]) -> bool:
    """Return True if ``candidate`` lies inside (or equals) an allowed directory.

    Both the candidate and every allowed directory are resolved the same way
    (absolute, normalized, symlinks followed), and containment is checked per
    path component, so ``/home/userx`` is not inside ``/home/user``. Malformed
    input yields False rather than an exception.
    """
    if not isinstance(candidate, str) or not candidate.strip() or "\x00" in candidate:
        return False
    try:
        resolved = _resolve(candidate)
    except (OSError, ValueError) as exc:
        logger.debug("Rejecting unresolvable path %r: %s", candidate, exc)
        return False

    for allowed_dir in allowed_dirs:
        if not allowed_dir:
            continue
        try:
            resolved_dir = _resolve(allowed_dir)
        except (OSError, ValueError, TypeError):
            continue
        try:
            resolved.relative_to(resolved_dir)
        except ValueError:
            continue
        return True
    return False


def mime_type_from_extension(path: str) -> str:
    """MIME type for a local file, defaulting to PNG for unknown extensions."""
    return EXTENSION_MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


def guess_mime_type_from_url(url: str) -> str:
    """Guess the MIME type of a download from its URL path, defaulting to PNG."""
    try:
        url_path = parse.urlparse(url).path
    except ValueError:
        return DEFAULT_MIME_TYPE
    return mime_type_from_extension(url_path)


def map_aspect_ratio_to_size(
    aspect_ratio: Optional[str] = None,
    image_size: Optional[str] = None,
    model: Optional[str] = None,
) -> str:
    """Map an aspect ratio / size hint to SiliconFlow's ``WIDTHxHEIGHT`` format."""
    if model and "qwen" in model.lower() and aspect_ratio in QWEN_SIZES:
        return QWEN_SIZES[aspect_ratio]
    if aspect_ratio in KOLORS_SIZES:
        return KOLORS_SIZES[aspect_ratio]
    return IMAGE_SIZE_DEFAULTS.get(image_size or "", DEFAULT_IMAGE_SIZE)


def _http_request_json(*, url: str, api_key: str, method: str, payload: Optional[Dict[str, Any]] = None,
                       timeout: int = 30) -> Dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = request.Request(
        url,
        data=data,
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        method=method,
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            content = resp.read()
            return json.loads(content.decode("utf-8"))
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        raise RuntimeError(f"API error ({exc.code}): {detail[:400]}") from exc
    except error.URLError as exc:
        raise RuntimeError(f"Network error: {exc}") from exc
    except ValueError as exc:
        raise RuntimeError(f"Invalid JSON in API response: {exc}") from exc


def _http_get_bytes(url: str, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    """Download at most ``max_bytes`` from an http(s) URL."""
    scheme = parse.urlparse(url).scheme.lower() if isinstance(url, str) else ""
    if scheme not in ("http", "https"):
        raise RuntimeError(f"Refusing to download image from non-HTTP URL: {str(url)[:200]}")
    req = request.Request(url, method="GET")
    try:
        with request.urlopen(req, timeout=60) as resp:
            content = resp.read(max_bytes + 1)
    except error.HTTPError as exc:
        raise RuntimeError(f"Failed to download image: {exc.code}") from exc
    except error.URLError as exc:
        raise RuntimeError(f"Network error downloading image: {exc}") from exc
    if len(content) > max_bytes:
        raise RuntimeError(f"Downloaded image exceeds the {max_bytes} byte limit.")
    return content


def _image_urls(result: Any) -> List[str]:
    """Pull the result URLs out of an ``/images/generations`` response."""
    if not isinstance(result, dict):
        raise RuntimeError("Unexpected API response format")
    images = result.get("images") or []
    if not isinstance(images, list):
        raise RuntimeError("Unexpected API response format")
    urls = []
    for img in images:
        url = img.get("url") if isinstance(img, dict) else None
        if not isinstance(url, str) or not url:
            raise RuntimeError("Image entry without a URL in API response")
        urls.append(url)
    return urls


class SiliconFlowService:
    """Thin wrapper around the SiliconFlow image endpoints."""

    def __init__(self, config: ServiceConfig) -> None:
        if not config.api_key or not config.api_key.strip():
            raise ValueError("SiliconFlow API key is required")
        self.config = config
        self.api_key = config.api_key
        self.base_url = config.base_url.rstrip("/")
        self.allowed_image_dirs: Tuple[str, ...] = tuple(config.allowed_image_dirs)

    def is_path_allowed(self, file_path: str) -> bool:
        """Check a local path against the configured allowed directories."""
        return is_path_allowed(file_path, self.allowed_image_dirs)

    def _post(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return _http_request_json(
            url=f"{self.base_url}{endpoint}", api_key=self.api_key, method="POST", payload=body, timeout=120
        )

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        if query:
            url = f"{url}?{parse.urlencode(query)}"
        return _http_request_json(url=url, api_key=self.api_key, method="GET", timeout=30)

    def _download(self, image_url: str) -> ImagePayload:
        buffer = _http_get_bytes(image_url)
        return ImagePayload(
            data=base64.b64encode(buffer).decode("utf-8"),
            mime_type=guess_mime_type_from_url(image_url),
            source_url=image_url,
        )

    def resolve_image_input(self, image: str) -> str:
        """Turn the edit tool's ``image`` argument into something the API accepts.

        Data URIs and http(s) URLs pass through unchanged. A string naming a
        readable file inside the allowed directories is inlined as a data URI.
        Anything else is treated as raw base64 PNG data.
        """
        if image.startswith("data:image/"):
            return image
        if image.startswith(("http://", "https://")):
            return image

        if self.is_path_allowed(image):
            try:
                image_bytes = Path(image).expanduser().read_bytes()
            except (OSError, ValueError) as exc:
                logger.debug("Treating %r as raw data, file not readable: %s", image[:80], exc)
            else:
                encoded = base64.b64encode(image_bytes).decode("utf-8")
                return f"data:{mime_type_from_extension(image)};base64,{encoded}"

        return f"data:image/png;base64,{image}"

    def generate_image(
        self,
        prompt: str,
        model: str = DEFAULT_GENERATE_MODEL,
        aspect_ratio: Optional[str] = None,
        image_size: Optional[str] = None,
        count: int = 1,
        negative_prompt: Optional[str] = None,
        seed: Optional[int] = None,
    ) -> List[ImagePayload]:
        """Generate images and download them as base64 payloads.

        Args:
            prompt: Description of the image to generate.
            model: SiliconFlow model ID.
            aspect_ratio: Optional aspect ratio such as "16:9".
            image_size: Optional resolution hint ("1K", "2K", "4K").
            count: Number of images; capped at 4.
            negative_prompt: What to avoid in the image.
            seed: Seed for reproducible results.

        Returns:
            One ImagePayload per image returned by the API.

        Raises:
            RuntimeError: If the request or a download fails.
        """
        body: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "batch_size": min(count, MAX_BATCH_SIZE),
        }
        if aspect_ratio or image_size:
            body["image_size"] = map_aspect_ratio_to_size(aspect_ratio, image_size, model)
        if negative_prompt:
            body["negative_prompt"] = negative_prompt
        if seed is not None:
            body["seed"] = seed

        try:
            urls = _image_urls(self._post("/images/generations", body))
            if not urls:
                raise RuntimeError("No images were generated")
            return [self._download(url) for url in urls]
        except RuntimeError as exc:
            raise RuntimeError(f"Image generation failed: {exc}") from exc

    def edit_image(self, image: str, prompt: str, model: str = DEFAULT_EDIT_MODEL) -> ImagePayload:
        """Edit an image given as a data URI, URL, allowed local path or raw base64."""
        body = {
            "model": model,
            "prompt": prompt,
            "image": self.resolve_image_input(image),
        }
        try:
            urls = _image_urls(self._post("/images/generations", body))
            if not urls:
                raise RuntimeError("No edited image was returned")
            return self._download(urls[0])
        except RuntimeError as exc:
            raise RuntimeError(f"Image editing failed: {exc}") from exc

    def list_image_models(self) -> List[ModelInfo]:
        """List text-to-image and image-to-image models."""
        try:
            result = self._get("/models", {"type": "image"})
        except RuntimeError as exc:
            raise RuntimeError(f"Failed to list models: {exc}") from exc

        entries = result.get("data") if isinstance(result, dict) else None
        if entries is not None and not isinstance(entries, list):
            raise RuntimeError("Failed to list models: unexpected API response format")

        models: List[ModelInfo] = []
        for model in entries or []:
            model_id = model.get("id") if isinstance(model, dict) else None
            if not isinstance(model_id, str) or not model_id:
                continue
            lowered = model_id.lower()
            if not any(keyword in lowered for keyword in IMAGE_MODEL_KEYWORDS):
                continue
            models.append(
                ModelInfo(
                    id=model_id,
                    name=model_id,
                    description=f"Image generation model: {model_id}",
                )
            )
        return models

    def test_connection(self) -> bool:
        """Return True if the API key can list models."""
        try:
            self._get("/models")
        except RuntimeError as exc:
            logger.warning("SiliconFlow connection check failed: %s", exc)
            return False
        return True


# 1x1 transparent PNG
MOCK_IMAGE_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)


class MockSiliconFlowService(SiliconFlowService):
    """Offline stand-in used when ``SILICONFLOW_MOCK=true``."""

    def __init__(self, config: Optional[ServiceConfig] = None) -> None:
        config = config or ServiceConfig()
        super().__init__(dataclasses.replace(config, api_key=config.api_key or "mock"))

    def generate_image(self, prompt: str, model: str = DEFAULT_GENERATE_MODEL, aspect_ratio: Optional[str] = None,
                       image_size: Optional[str] = None, count: int = 1, negative_prompt: Optional[str] = None,
                       seed: Optional[int] = None) -> List[ImagePayload]:
        return [ImagePayload(data=MOCK_IMAGE_BASE64) for _ in range(min(count, MAX_BATCH_SIZE))]

    def edit_image(self, image: str, prompt: str, model: str = DEFAULT_EDIT_MODEL) -> ImagePayload:
        return ImagePayload(data=MOCK_IMAGE_BASE64)

    def list_image_models(self) -> List[ModelInfo]:
        return [ModelInfo(id=DEFAULT_GENERATE_MODEL, name="FLUX.1-dev", description="Mock model")]

    def test_connection(self) -> bool:
        return True
