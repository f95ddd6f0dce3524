"""Persisting base64 image payloads to disk.

Every image returned by the remote service passes through
:meth:`ImageFileStore.save`, which validates the payload before any byte of it
reaches the filesystem:

1. the payload must be a non-empty string;
2. it must use the base64 alphabet with at most two ``=`` padding characters;
3. its estimated decoded size must not exceed the ceiling (checked before
   decoding, so oversized input is never materialised);
4. the declared MIME type must be on the allow-list;
5. the decoded size is checked again against the same ceiling.

The file name is ``{prefix}_{random hex}.{ext}`` where ``ext`` comes only from
the validated MIME type and the suffix comes from :mod:`secrets`.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import secrets
from typing import Dict, Optional

from .config import default_output_dir

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024

# MIME type -> file extension (without dot)
MIME_EXTENSIONS: Dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}

_BASE64_RE = re.compile(r"[A-Za-z0-9+/]*={0,2}")
_SUFFIX_BYTES = 8


class ImageSaveError(Exception):
    """Base class for failures while persisting an image payload."""


class InvalidInputError(ImageSaveError, ValueError):
    """Payload or filename prefix is missing or of the wrong type."""


class InvalidFormatError(ImageSaveError, ValueError):
    """Payload is not valid base64."""


class PayloadTooLargeError(ImageSaveError, ValueError):
    """Payload exceeds the configured size ceiling."""


class UnsupportedMimeTypeError(ImageSaveError, ValueError):
    """Declared MIME type is not on the allow-list."""


class FilesystemError(ImageSaveError):
    """Creating the output directory or writing the file failed."""


def estimate_decoded_size(base64_data: str) -> int:
    """Upper bound of the decoded size: ceil(len * 3 / 4)."""
    return (len(base64_data) * 3 + 3) // 4


def check_mime_type(mime_type: object) -> str:
    """Return ``mime_type`` if it is exactly one of the allowed types, else raise."""
    if not isinstance(mime_type, str) or mime_type not in MIME_EXTENSIONS:
        allowed = ", ".join(MIME_EXTENSIONS)
        raise UnsupportedMimeTypeError(f"Unsupported MIME type: {mime_type!r}. Supported: {allowed}")
    return mime_type


def extension_for(mime_type: str) -> str:
    """File extension (without dot) for an allowed MIME type."""
    return MIME_EXTENSIONS[check_mime_type(mime_type)]


def _check_prefix(prefix: object) -> str:
    if not isinstance(prefix, str) or not prefix:
        raise InvalidInputError("Filename prefix is required and must be a non-empty string.")
    if "/" in prefix or "\\" in prefix or ".." in prefix or "\x00" in prefix:
        raise InvalidInputError(f"Filename prefix must not contain path components: {prefix!r}")
    return prefix


class ImageFileStore:
    """Writes validated image payloads into a single output directory."""

    def __init__(self, output_dir: Optional[str] = None, *, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        self.output_dir = os.path.abspath(output_dir or default_output_dir())
        self.max_bytes = max_bytes

    def validate(self, base64_data: object, mime_type: object) -> bytes:
        """Run the validation pipeline and return the decoded bytes.

        Raises:
            InvalidInputError: payload missing or not a string.
            InvalidFormatError: payload is not base64.
            PayloadTooLargeError: payload exceeds ``max_bytes``.
            UnsupportedMimeTypeError: MIME type not on the allow-list.
        """
        if not isinstance(base64_data, str) or not base64_data:
            raise InvalidInputError("Image data is required and must be a non-empty base64 string.")

        if not _BASE64_RE.fullmatch(base64_data):
            raise InvalidFormatError(
                "Image data is not valid base64. Strip any 'data:...;base64,' prefix before saving."
            )

        estimated = estimate_decoded_size(base64_data)
        if estimated > self.max_bytes:
            raise PayloadTooLargeError(
                f"Image data too large: ~{estimated} bytes exceeds the {self.max_bytes} byte limit."
            )

        check_mime_type(mime_type)

        try:
            buffer = base64.b64decode(base64_data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidFormatError(f"Unable to decode image data: {exc}") from exc

        if len(buffer) > self.max_bytes:
            raise PayloadTooLargeError(
                f"Image data too large: {len(buffer)} bytes exceeds the {self.max_bytes} byte limit."
            )
        return buffer

    def ensure_output_dir(self) -> str:
        """Create the output directory (and parents) if it does not exist."""
        try:
            os.makedirs(self.output_dir, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Unable to create output directory {self.output_dir}: {exc}") from exc
        return self.output_dir

    def build_filename(self, prefix: str, mime_type: str) -> str:
        """Return ``{prefix}_{random hex}.{ext}``."""
        return f"{_check_prefix(prefix)}_{secrets.token_hex(_SUFFIX_BYTES)}.{extension_for(mime_type)}"

    def save(self, base64_data: str, prefix: str, mime_type: str) -> str:
        """Validate a base64 image payload and write it to the output directory.

        Args:
            base64_data: Base64-encoded image bytes, without a data-URI prefix.
            prefix: Filename prefix; must not contain path separators or ``..``.
            mime_type: Declared MIME type; selects the file extension.

        Returns:
            Absolute path of the written file.

        Raises:
            ImageSaveError: one of its subclasses, naming the first failed check.
        """
        buffer = self.validate(base64_data, mime_type)
        filename = self.build_filename(prefix, mime_type)
        directory = self.ensure_output_dir()
        path = os.path.join(directory, filename)

        try:
            # "x" refuses to replace an existing file
            with open(path, "xb") as handle:
                handle.write(buffer)
        except OSError as exc:
            self._discard_partial(path, exc)
            raise FilesystemError(f"Unable to write image to {path}: {exc}") from exc

        logger.info("Saved %d byte image to %s", len(buffer), path)
        return path

    @staticmethod
    def _discard_partial(path: str, exc: OSError) -> None:
        if isinstance(exc, FileExistsError):
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as cleanup_exc:
            logger.warning("Could not remove partial file %s: %s", path, cleanup_exc)


def get_temp_dir() -> str:
    """Directory images are saved to when no output directory is configured."""
    return default_output_dir()


def save_image_to_file(
    base64_data: str,
    prefix: str,
    mime_type: str,
    output_dir: Optional[str] = None,
) -> str:
    """Save base64 image data to a uniquely named file and return its path."""
    return ImageFileStore(output_dir).save(base64_data, prefix, mime_type)
