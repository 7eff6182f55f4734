"""
Pipeline Stage Implementations

Each stage is a separate function that can be called independently.
Stages take a Pillow image plus the template and return (image, metadata);
encode returns (bytes, metadata). Decode, geometry, tone and encode raise
on failure. Frame and watermark degrade: they log a DecorationWarning and
hand back their input unchanged.
"""

import io
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError, features

from imprint.core.exceptions import (
    DecodeError,
    DecorationWarning,
    InvalidRegionError,
    PipelineStageError,
)
from imprint.core.logging import get_logger, log_stage
from imprint.core.metrics import record_decoration_warning
from imprint.modules.templates.schemas import TemplateRead
from imprint.pipeline.compositing import (
    draw_box,
    flatten,
    has_alpha,
    parse_hex_color,
    shadow_layer,
    text_layer,
)

logger = get_logger(__name__)

RESAMPLE = Image.Resampling.LANCZOS

# Gravity for cover cropping, as ImageOps.fit centering
CROP_CENTERING = {
    "center": (0.5, 0.5),
    "top": (0.5, 0.0),
    "bottom": (0.5, 1.0),
    "left": (0.0, 0.5),
    "right": (1.0, 0.5),
    "top-left": (0.0, 0.0),
    "top-right": (1.0, 0.0),
    "bottom-left": (0.0, 1.0),
    "bottom-right": (1.0, 1.0),
}

PNG_COMPRESS_LEVEL = 9
WEBP_METHOD = 6
AVIF_SPEED = 6

PIL_FORMATS = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP", "avif": "AVIF"}


@dataclass
class DecodedImage:
    """Decoded pixels plus what the encoder may need to carry over."""
    image: Image.Image
    width: int
    height: int
    format: Optional[str]
    exif: Optional[bytes] = None
    icc_profile: Optional[bytes] = None


# =============================================================================
# Stage 0: Decode
# =============================================================================

@log_stage("decode")
def decode_image(data: bytes) -> DecodedImage:
    """
    Decode raw bytes into an RGB or RGBA image.

    Raises:
        DecodeError: the bytes are not an image Pillow can read
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not decode image: {e}")

    source_format = img.format.lower() if img.format else None
    exif = img.info.get("exif")
    icc_profile = img.info.get("icc_profile")

    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if has_alpha(img) else "RGB")

    return DecodedImage(
        image=img,
        width=img.width,
        height=img.height,
        format=source_format,
        exif=exif,
        icc_profile=icc_profile
    )


# =============================================================================
# Stage 1: Geometry (crop + resize)
# =============================================================================

def _scaled_size(src: Tuple[int, int], target: Tuple[int, int], cover: bool) -> Tuple[int, int]:
    """Aspect-preserving size where one side equals its target exactly."""
    src_w, src_h = src
    width, height = target
    width_ratio = width / src_w
    height_ratio = height / src_h

    match_width = width_ratio >= height_ratio if cover else width_ratio <= height_ratio
    if match_width:
        return width, max(1, round(src_h * width_ratio))
    return max(1, round(src_w * height_ratio)), height


@log_stage("geometry")
def apply_geometry(image: Image.Image, template: TemplateRead) -> Tuple[Image.Image, Dict[str, Any]]:
    """
    Crop (optional) then resize to the template box using its fit mode.

    Raises:
        InvalidRegionError: the crop rectangle leaves the source bounds
    """
    metadata: Dict[str, Any] = {
        "original_width": image.width,
        "original_height": image.height,
        "fit": template.fit,
    }

    region = template.crop_region
    if region is not None:
        x, y, w, h = region
        if x + w > image.width or y + h > image.height:
            raise InvalidRegionError(
                f"Crop region {w}x{h}+{x}+{y} exceeds image bounds {image.width}x{image.height}",
                region={"x": x, "y": y, "width": w, "height": h},
                bounds={"width": image.width, "height": image.height}
            )
        image = image.crop((x, y, x + w, y + h))
        metadata["crop"] = {"x": x, "y": y, "width": w, "height": h}

    target = (template.width, template.height)
    fit = template.fit

    if fit == "cover":
        image = ImageOps.fit(
            image,
            target,
            method=RESAMPLE,
            centering=CROP_CENTERING.get(template.crop_position, (0.5, 0.5))
        )
    elif fit == "fill":
        image = image.resize(target, RESAMPLE)
    elif fit in ("inside", "outside"):
        image = image.resize(_scaled_size(image.size, target, cover=fit == "outside"), RESAMPLE)
    elif fit == "contain":
        resized = image.resize(_scaled_size(image.size, target, cover=False), RESAMPLE)
        if template.background_color:
            fill = parse_hex_color(template.background_color)
        else:
            fill = (0, 0, 0, 0)
        canvas = Image.new("RGBA", target, fill)
        offset = ((target[0] - resized.width) // 2, (target[1] - resized.height) // 2)
        canvas.alpha_composite(resized.convert("RGBA"), dest=offset)
        # An opaque pad over an opaque source needs no alpha channel
        if template.background_color and image.mode == "RGB":
            canvas = canvas.convert("RGB")
        image = canvas
    else:
        raise PipelineStageError(f"Unknown fit mode: {fit}", stage="geometry")

    metadata["width"] = image.width
    metadata["height"] = image.height
    return image, metadata


# =============================================================================
# Stage 2: Tone
# =============================================================================

def _rotate_hue(rgb: Image.Image, degrees: float) -> Image.Image:
    shift = round(degrees / 360.0 * 256)
    h, s, v = rgb.convert("HSV").split()
    h = h.point(lambda p: (p + shift) % 256)
    return Image.merge("HSV", (h, s, v)).convert("RGB")


def _linear(rgb: Image.Image, a: float, b: float) -> Image.Image:
    arr = np.asarray(rgb, dtype=np.float32)
    out = np.clip(a * arr + b, 0, 255)
    return Image.fromarray(np.rint(out).astype(np.uint8))


@log_stage("tone")
def apply_tone(image: Image.Image, template: TemplateRead) -> Tuple[Image.Image, Dict[str, Any]]:
    """
    Modulate, contrast, blur, sharpen; in that order.

    Absent parameters and no-op values are skipped. Alpha passes through
    untouched.
    """
    applied = []
    alpha = image.getchannel("A") if image.mode == "RGBA" else None
    rgb = image.convert("RGB") if alpha is not None else image

    if template.brightness:
        rgb = ImageEnhance.Brightness(rgb).enhance(1 + template.brightness / 100)
        applied.append("brightness")
    if template.saturation:
        rgb = ImageEnhance.Color(rgb).enhance(1 + template.saturation / 100)
        applied.append("saturation")
    if template.hue and template.hue % 360:
        rgb = _rotate_hue(rgb, template.hue)
        applied.append("hue")

    if template.contrast:
        a = 1 + template.contrast / 100
        rgb = _linear(rgb, a, 128 * (1 - a))
        applied.append("contrast")

    if template.blur is not None:
        rgb = rgb.filter(ImageFilter.GaussianBlur(radius=template.blur))
        applied.append("blur")

    if template.sharpen:
        rgb = rgb.filter(
            ImageFilter.UnsharpMask(radius=2, percent=round(template.sharpen * 3), threshold=3)
        )
        applied.append("sharpen")

    if alpha is not None:
        rgb.putalpha(alpha)

    return rgb, {"applied": applied}


# =============================================================================
# Stages 3-4: Decorations (frame, watermark)
# =============================================================================

def _degrade(stage: str, image: Image.Image, error: Exception) -> Tuple[Image.Image, Dict[str, Any]]:
    warning = DecorationWarning(stage, error)
    logger.warning(
        f"{stage}_stage_degraded",
        stage=stage,
        error=str(error),
        error_type=type(error).__name__,
        warning=str(warning)
    )
    record_decoration_warning(stage)
    return image, {"skipped": True, "warning": str(warning)}


def frame_margin(template: TemplateRead) -> int:
    """Extra room around the box so the offset, blurred shadow is not clipped."""
    if not template.box_shadow_enabled:
        return 0
    return max(abs(template.box_shadow_offset_x), abs(template.box_shadow_offset_y)) + template.box_shadow_blur


@log_stage("frame")
def apply_frame(image: Image.Image, template: TemplateRead) -> Tuple[Image.Image, Dict[str, Any]]:
    """Padded, bordered, optionally rounded and shadowed box behind the image."""
    if not template.box_enabled:
        return image, {"skipped": True}

    try:
        inset = template.box_padding + template.box_border_width
        box_w = image.width + 2 * inset
        box_h = image.height + 2 * inset
        margin = frame_margin(template)
        size = (box_w + 2 * margin, box_h + 2 * margin)
        radius = template.box_border_radius

        canvas = Image.new("RGBA", size, (0, 0, 0, 0))

        if template.box_shadow_enabled:
            dx = template.box_shadow_offset_x
            dy = template.box_shadow_offset_y
            shadow = shadow_layer(
                size,
                (margin + dx, margin + dy, margin + dx + box_w - 1, margin + dy + box_h - 1),
                radius,
                parse_hex_color(template.box_shadow_color, round(template.box_shadow_opacity * 255)),
                template.box_shadow_blur / 2
            )
            canvas.alpha_composite(shadow)

        draw_box(
            ImageDraw.Draw(canvas),
            (margin, margin, margin + box_w - 1, margin + box_h - 1),
            radius,
            fill=parse_hex_color(template.box_color),
            outline=parse_hex_color(template.box_border_color),
            width=template.box_border_width
        )

        canvas.alpha_composite(image.convert("RGBA"), dest=(margin + inset, margin + inset))
    except Exception as e:
        return _degrade("frame", image, e)

    return canvas, {"width": canvas.width, "height": canvas.height, "shadow_margin": margin}


def watermark_anchor(
    position: str,
    size: Tuple[int, int],
    font_size: int
) -> Tuple[Tuple[float, float], str]:
    """Pixel position and Pillow text anchor for a named watermark position."""
    width, height = size
    margin = font_size * 0.5
    anchors = {
        "top-left": ((margin, margin), "la"),
        "top-right": ((width - margin, margin), "ra"),
        "bottom-left": ((margin, height - margin), "ls"),
        "bottom-right": ((width - margin, height - margin), "rs"),
        "center": ((width / 2, height / 2), "mm"),
    }
    return anchors.get(position, anchors["bottom-right"])


@log_stage("watermark")
def apply_watermark(image: Image.Image, template: TemplateRead) -> Tuple[Image.Image, Dict[str, Any]]:
    """White text overlay at the configured anchor and opacity."""
    if not template.watermark_enabled or not template.watermark_text:
        return image, {"skipped": True}

    try:
        font_size = template.watermark_size or max(1, round(max(image.width, image.height) * 0.05))
        position, anchor = watermark_anchor(template.watermark_position, image.size, font_size)
        overlay = text_layer(
            image.size,
            template.watermark_text,
            position,
            anchor,
            font_size,
            template.watermark_opacity
        )
        result = image.convert("RGBA")
        result.alpha_composite(overlay)
        if image.mode == "RGB":
            result = result.convert("RGB")
    except Exception as e:
        return _degrade("watermark", image, e)

    return result, {"font_size": font_size, "position": template.watermark_position}


# =============================================================================
# Stage 5: Encode
# =============================================================================

@log_stage("encode")
def encode_image(
    image: Image.Image,
    template: TemplateRead,
    source: Optional[DecodedImage] = None
) -> Tuple[bytes, Dict[str, Any]]:
    """
    Serialize to the template's output format.

    Raises:
        PipelineStageError: the encoder is unavailable or failed
    """
    fmt = template.format
    options: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {"format": fmt, "quality": template.quality}

    if fmt == "jpeg":
        image = flatten(image, template.background_color)
        options.update(
            quality=template.quality,
            progressive=template.progressive,
            optimize=template.optimize_scans
        )
        metadata["progressive"] = template.progressive
    elif fmt == "png":
        if template.quality < 100:
            colors = max(2, round(256 * template.quality / 100))
            image = image.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
            metadata["palette_colors"] = colors
        options.update(compress_level=PNG_COMPRESS_LEVEL)
        # Pillow's PNG encoder cannot interlace
        metadata["progressive"] = False
    elif fmt == "webp":
        options.update(quality=template.quality, method=WEBP_METHOD)
    elif fmt == "avif":
        if not features.check("avif"):
            raise PipelineStageError("AVIF encoding is not supported by this Pillow build", stage="encode")
        options.update(quality=template.quality, speed=AVIF_SPEED)
    else:
        raise PipelineStageError(f"Unsupported output format: {fmt}", stage="encode")

    if template.strip_metadata:
        image = image.copy()
        image.info = {}
    elif source is not None:
        if source.exif:
            options["exif"] = source.exif
        if source.icc_profile:
            options["icc_profile"] = source.icc_profile
    metadata["metadata_stripped"] = template.strip_metadata

    buffer = io.BytesIO()
    try:
        image.save(buffer, format=PIL_FORMATS[fmt], **options)
    except (OSError, ValueError, KeyError) as e:
        raise PipelineStageError(f"Encoding to {fmt} failed: {e}", stage="encode")

    output = buffer.getvalue()
    metadata.update(width=image.width, height=image.height, size=len(output))
    return output, metadata
