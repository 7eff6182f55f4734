"""
Raster helpers for the decorative stages.

The frame and the watermark are drawn onto transparent RGBA layers with
Pillow's drawing primitives and alpha-composited over the image.
"""

from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

RGBA = Tuple[int, int, int, int]

# Tried in order before falling back to Pillow's bundled font
FONT_CANDIDATES = ("DejaVuSans.ttf", "Arial.ttf", "LiberationSans-Regular.ttf")


def parse_hex_color(value: str, alpha: int = 255) -> RGBA:
    """'#rgb' or '#rrggbb' to an RGBA tuple."""
    digits = value.lstrip("#")
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    if len(digits) != 6:
        raise ValueError(f"Invalid hex color: {value!r}")
    r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
    return (r, g, b, alpha)


def has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def flatten(image: Image.Image, background: Optional[str] = None) -> Image.Image:
    """Composite transparency onto a solid color (white if none) and drop alpha."""
    if not has_alpha(image):
        return image.convert("RGB")
    color = parse_hex_color(background) if background else (255, 255, 255, 255)
    base = Image.new("RGBA", image.size, color)
    base.alpha_composite(image.convert("RGBA"))
    return base.convert("RGB")


def draw_box(
    draw: ImageDraw.ImageDraw,
    box: Tuple[int, int, int, int],
    radius: int,
    fill: RGBA,
    outline: Optional[RGBA] = None,
    width: int = 0
):
    """Rectangle with optional rounded corners; the outline is stroked inward."""
    outline = outline if width > 0 else None
    if radius > 0:
        draw.rounded_rectangle(box, radius=radius, fill=fill, outline=outline, width=width)
    else:
        draw.rectangle(box, fill=fill, outline=outline, width=width)


def shadow_layer(
    size: Tuple[int, int],
    box: Tuple[int, int, int, int],
    radius: int,
    color: RGBA,
    blur: float
) -> Image.Image:
    """The box shape in the shadow color, softened with a Gaussian blur."""
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    draw_box(ImageDraw.Draw(layer), box, radius, fill=color)
    if blur > 0:
        layer = layer.filter(ImageFilter.GaussianBlur(radius=blur))
    return layer


def load_font(size: int) -> ImageFont.FreeTypeFont:
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def text_layer(
    size: Tuple[int, int],
    text: str,
    position: Tuple[float, float],
    anchor: str,
    font_size: int,
    opacity: float
) -> Image.Image:
    """White text at the given opacity on a transparent layer."""
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    draw.text(
        position,
        text,
        font=load_font(font_size),
        fill=(255, 255, 255, round(opacity * 255)),
        anchor=anchor
    )
    return layer
