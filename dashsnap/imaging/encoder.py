"""Conversion of raw PNG screenshots into e-paper-ready images."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageChops, ImageOps

from dashsnap.cron.types import DitheringOptions, ImageFormat

GRAYSCALE_LEVELS = {
    "bw": 2,
    "gray-4": 4,
    "gray-16": 16,
    "gray-256": 256,
}

DITHER_METHODS = ("floyd-steinberg", "ordered", "none")

BAYER_4X4 = (
    (0, 8, 2, 10),
    (12, 4, 14, 6),
    (3, 11, 1, 9),
    (15, 7, 13, 5),
)

ROTATIONS = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


@dataclass(frozen=True)
class EncodeOptions:
    format: ImageFormat = ImageFormat.PNG
    rotate: int | None = None
    invert: bool = False
    dithering: DitheringOptions | None = None


def encode(raw: bytes, options: EncodeOptions) -> bytes:
    """
    Apply dithering, rotation and inversion, then encode.

    Pure: reads ``raw`` and returns new bytes. Rotation is clockwise.
    """
    with Image.open(BytesIO(raw)) as source:
        image = source.convert("RGB")

    if options.dithering is not None and options.dithering.enabled:
        image = dither(image, options.dithering)

    if options.rotate in ROTATIONS:
        image = image.transpose(ROTATIONS[options.rotate])

    if options.invert:
        image = ImageOps.invert(image)

    return _save(image, ImageFormat(options.format))


def dither(image: Image.Image, options: DitheringOptions) -> Image.Image:
    """Reduce an image to a grayscale palette, returning mode ``L``."""
    levels = GRAYSCALE_LEVELS.get(options.palette, GRAYSCALE_LEVELS["gray-4"])
    method = options.method if options.method in DITHER_METHODS else "floyd-steinberg"

    gray = image.convert("L")
    if options.normalize:
        gray = ImageOps.autocontrast(gray)
    gray = _apply_levels(gray, options.black_level, options.white_level)

    if levels >= 256:
        return gray
    if method == "ordered":
        gray = _ordered_offset(gray, levels)
        method = "none"

    dither_mode = Image.Dither.FLOYDSTEINBERG if method == "floyd-steinberg" else Image.Dither.NONE
    if levels == 2:
        return gray.convert("1", dither=dither_mode).convert("L")

    quantized = gray.convert("RGB").quantize(palette=_palette_image(levels), dither=dither_mode)
    return quantized.convert("L")


def _apply_levels(gray: Image.Image, black_level: int, white_level: int) -> Image.Image:
    if black_level <= 0 and white_level >= 100:
        return gray
    low = 255 * black_level / 100
    high = max(255 * white_level / 100, low + 1)
    scale = 255 / (high - low)
    return gray.point(lambda v: int(min(max((v - low) * scale, 0), 255)))


def _palette_image(levels: int) -> Image.Image:
    step = 255 / (levels - 1)
    colors: list[int] = []
    for i in range(levels):
        value = round(i * step)
        colors.extend((value, value, value))
    # Pad with the last color so unused entries never get picked.
    colors.extend(colors[-3:] * (256 - levels))
    palette = Image.new("P", (1, 1))
    palette.putpalette(colors)
    return palette


def _ordered_offset(gray: Image.Image, levels: int) -> Image.Image:
    """Add a tiled Bayer threshold so plain quantization yields ordered dithering."""
    amplitude = 255 / (levels - 1)
    tile = Image.new("L", (4, 4))
    tile.putdata([int((v + 0.5) / 16 * amplitude) for row in BAYER_4X4 for v in row])

    threshold = Image.new("L", gray.size)
    for y in range(0, gray.height, 4):
        for x in range(0, gray.width, 4):
            threshold.paste(tile, (x, y))
    return ImageChops.add(gray, threshold, scale=1.0, offset=-int(amplitude / 2))


def _save(image: Image.Image, fmt: ImageFormat) -> bytes:
    buffer = BytesIO()
    if fmt is ImageFormat.JPEG:
        image.save(buffer, format="JPEG", quality=75, progressive=True)
    elif fmt is ImageFormat.BMP:
        image.save(buffer, format="BMP")
    else:
        image.save(buffer, format="PNG", optimize=True, compress_level=9)
    return buffer.getvalue()
