"""Image processing utilities for thumbnail generation and inline previews"""

import base64
import logging
import os
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError

from models.errors import DecodeError, UnsupportedFormatError

logger = logging.getLogger("ThumbnailProcessor")

# Decoded formats we accept as source images
SUPPORTED_FORMATS = ("JPEG", "PNG", "WEBP")

# Source extension -> (Pillow output format, thumbnail extension)
OUTPUT_FORMATS: Dict[str, Tuple[str, str]] = {
    ".jpg": ("JPEG", ".jpg"),
    ".jpeg": ("JPEG", ".jpg"),
    ".png": ("PNG", ".png"),
    ".webp": ("WEBP", ".webp"),
}

# EXIF orientations that rotate the image by 90 or 270 degrees
TRANSPOSED_ORIENTATIONS = (5, 6, 7, 8)

# Simple in-memory cache for processed previews
_preview_cache: Dict[str, "EncodedImage"] = {}


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str


def displayed_size(img: Image.Image) -> Tuple[int, int]:
    """Width and height as the image displays, after its EXIF orientation"""
    orientation = img.getexif().get(ExifTags.Base.Orientation, 1)
    if orientation in TRANSPOSED_ORIENTATIONS:
        return img.height, img.width
    return img.width, img.height


def output_format_for(extension: str) -> Tuple[str, str]:
    """Pillow format and file extension a thumbnail of this source gets"""
    try:
        return OUTPUT_FORMATS[extension.lower()]
    except KeyError:
        raise UnsupportedFormatError(extension, f"no thumbnail encoder for '{extension}' files")


def inspect_image(path: Union[str, Path]) -> ImageInfo:
    """Read dimensions and format from the image header"""
    try:
        with Image.open(path) as img:
            width, height = displayed_size(img)
            info = ImageInfo(width=width, height=height, format=img.format or "")
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise DecodeError(str(path), f"cannot identify image: {e}") from e
    except (OSError, SyntaxError, ValueError) as e:
        raise DecodeError(str(path), f"cannot read image: {e}") from e
    if info.format not in SUPPORTED_FORMATS:
        raise UnsupportedFormatError(str(path), f"decoded format '{info.format}' is not supported")
    return info


def compute_thumbnail_size(width: int, height: int, target_width: int) -> Tuple[int, int]:
    """Scale to target_width preserving aspect ratio; never upscale"""
    if width <= target_width:
        return width, height
    scale = target_width / width
    return target_width, max(1, round(height * scale))


def _prepare_mode(img: Image.Image, output_format: str) -> Image.Image:
    """Flatten alpha on white for JPEG; keep alpha for PNG and WebP"""
    if output_format == "JPEG":
        if img.mode in ("RGBA", "LA", "P"):
            if img.mode == "P":
                img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        if img.mode != "RGB":
            return img.convert("RGB")
        return img

    if img.mode == "P":
        return img.convert("RGBA" if "transparency" in img.info else "RGB")
    if img.mode in ("RGBA", "LA", "RGB", "L"):
        return img
    return img.convert("RGBA" if "A" in img.mode else "RGB")


def render_thumbnail(
    source_path: Union[str, Path],
    dest_path: Union[str, Path],
    target_width: int,
    quality: int,
) -> ImageInfo:
    """Resize and re-encode one image, writing atomically.

    Returns the source image info, with dimensions as displayed after EXIF rotation.

    Raises:
        DecodeError: unreadable or corrupt source
        UnsupportedFormatError: decodable image in a format we do not publish
    """
    source_path = Path(source_path)
    dest_path = Path(dest_path)
    output_format, _ = output_format_for(source_path.suffix)

    try:
        with Image.open(source_path) as loaded:
            if loaded.format not in SUPPORTED_FORMATS:
                raise UnsupportedFormatError(
                    str(source_path), f"decoded format '{loaded.format}' is not supported"
                )
            loaded.load()
            im = ImageOps.exif_transpose(loaded)
            info = ImageInfo(width=im.width, height=im.height, format=loaded.format)
            new_size = compute_thumbnail_size(im.width, im.height, target_width)
            if new_size != im.size:
                im = im.resize(new_size, Image.Resampling.LANCZOS)
            im = _prepare_mode(im, output_format)

            buf = BytesIO()
            if output_format == "JPEG":
                im.save(buf, format="JPEG", quality=quality, optimize=True)
            elif output_format == "WEBP":
                im.save(buf, format="WEBP", quality=quality, method=5)
            else:
                im.save(buf, format="PNG", optimize=True)
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise DecodeError(str(source_path), f"cannot identify image: {e}") from e
    except (OSError, SyntaxError, ValueError) as e:
        raise DecodeError(str(source_path), f"cannot decode image: {e}") from e

    # Atomic write: temp file in the same directory, then rename
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = dest_path.with_name(dest_path.name + ".tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(buf.getvalue())
        temp_path.replace(dest_path)
    except OSError:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise

    logger.debug(
        f"Thumbnail {source_path.name}: {info.width}x{info.height} -> "
        f"{new_size[0]}x{new_size[1]} {output_format} q={quality}"
    )
    return info


@dataclass(frozen=True)
class EncodedImage:
    """Encoded preview with its metrics"""
    b64: str  # Base64 string (without data URI prefix)
    mime_type: str  # image/webp
    size_px: Tuple[int, int]
    bytes_len: int
    b64_chars: int
    raw_bytes: bytes  # Raw encoded bytes (for FastMCP.Image)


def get_cache_key(slug: str, fingerprint: str, max_dim: int) -> str:
    """Cache key for a processed preview; changes whenever the source bytes do"""
    return f"{slug}:{fingerprint[:16]}:{max_dim}:webp"


def _cache_preview(cache_key: str, encoded: EncodedImage):
    """Keep the last 100 previews"""
    if len(_preview_cache) >= 100:
        _preview_cache.pop(next(iter(_preview_cache)))
    _preview_cache[cache_key] = encoded


def encode_preview(
    image_path: Union[str, Path],
    *,
    max_dim: int = 512,
    max_b64_chars: int = 100_000,
    quality: int = 70,
    cache_key: Optional[str] = None,
) -> EncodedImage:
    """Downscale and re-encode an image to WebP within a base64 character budget.

    Tries a fixed ladder of sizes and qualities and returns the first result that fits.

    Raises:
        FileNotFoundError: image_path does not exist
        ValueError: image exceeds the budget even at the smallest setting
    """
    if cache_key and cache_key in _preview_cache:
        logger.debug(f"Cache hit for {cache_key}")
        return _preview_cache[cache_key]

    if not os.path.exists(image_path):
        raise FileNotFoundError(str(image_path))

    with Image.open(image_path) as loaded:
        im = ImageOps.exif_transpose(loaded)
        if im.mode not in ("RGB", "RGBA", "L", "LA"):
            im = im.convert("RGBA" if "A" in im.mode or "transparency" in im.info else "RGB")

    prefix_len = len("data:image/webp;base64,")
    for target in (max_dim, 384, 256):
        w, h = im.size
        if max(w, h) > target:
            scale = target / max(w, h)
            resized = im.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.LANCZOS)
        else:
            resized = im
        for q in (quality, 55, 40):
            buf = BytesIO()
            resized.save(buf, format="WEBP", quality=q, method=5)
            raw = buf.getvalue()
            b64_string = base64.b64encode(raw).decode("ascii")
            if len(b64_string) + prefix_len <= max_b64_chars:
                encoded = EncodedImage(
                    b64=b64_string,
                    mime_type="image/webp",
                    size_px=resized.size,
                    bytes_len=len(raw),
                    b64_chars=len(b64_string),
                    raw_bytes=raw,
                )
                if cache_key:
                    _cache_preview(cache_key, encoded)
                logger.info(
                    f"preview encoding: src_dims={w}x{h} preview_dims={resized.size[0]}x{resized.size[1]} "
                    f"quality={q} encoded={len(raw)}B b64_chars={len(b64_string)}"
                )
                return encoded

    raise ValueError(
        f"Image exceeds base64 budget of {max_b64_chars} chars even at 256px, quality=40. Refusing to inline."
    )
