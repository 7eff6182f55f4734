import io
from unittest.mock import patch

import pytest
from PIL import Image, ImageCms

from imprint.core.exceptions import PipelineStageError
from imprint.pipeline.stages import decode_image, encode_image


def _reopen(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def _jpeg_with_exif() -> bytes:
    exif = Image.Exif()
    exif[0x010F] = "Imprint Test Camera"
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64), (10, 20, 30)).save(buffer, format="JPEG", exif=exif.tobytes())
    return buffer.getvalue()


def test_jpeg_is_progressive_by_default(template_factory):
    output, meta = encode_image(Image.new("RGB", (64, 64)), template_factory())

    img = _reopen(output)
    assert img.format == "JPEG"
    assert img.info.get("progressive")
    assert meta["format"] == "jpeg"
    assert meta["progressive"] is True
    assert meta["size"] == len(output)


def test_jpg_alias_encodes_as_jpeg(template_factory):
    output, meta = encode_image(Image.new("RGB", (16, 16)), template_factory(format="jpg"))
    assert meta["format"] == "jpeg"
    assert _reopen(output).format == "JPEG"


def test_jpeg_flattens_transparency_onto_white(template_factory):
    image = Image.new("RGBA", (32, 32), (0, 0, 0, 0))
    output, _ = encode_image(image, template_factory(quality=100))

    img = _reopen(output)
    assert img.mode == "RGB"
    assert all(c >= 250 for c in img.getpixel((16, 16)))


def test_png_below_full_quality_is_palettized(template_factory):
    image = Image.new("RGB", (32, 32), (10, 200, 30))
    output, meta = encode_image(image, template_factory(format="png", quality=50))

    img = _reopen(output)
    assert img.format == "PNG"
    assert img.mode == "P"
    assert meta["palette_colors"] == 128
    assert meta["progressive"] is False


def test_png_full_quality_keeps_truecolor(template_factory):
    image = Image.new("RGBA", (32, 32), (10, 200, 30, 128))
    output, meta = encode_image(image, template_factory(format="png", quality=100))

    img = _reopen(output)
    assert img.mode == "RGBA"
    assert "palette_colors" not in meta


def test_webp_output(template_factory):
    output, meta = encode_image(Image.new("RGB", (32, 32)), template_factory(format="webp", quality=70))
    assert _reopen(output).format == "WEBP"
    assert meta["quality"] == 70


def test_avif_without_encoder_fails(template_factory):
    with patch("imprint.pipeline.stages.features.check", return_value=False):
        with pytest.raises(PipelineStageError) as exc_info:
            encode_image(Image.new("RGB", (8, 8)), template_factory(format="avif"))
    assert exc_info.value.stage == "encode"


def test_strip_metadata_drops_exif(template_factory):
    decoded = decode_image(_jpeg_with_exif())
    assert decoded.exif

    output, meta = encode_image(decoded.image, template_factory(strip_metadata=True), decoded)

    assert not _reopen(output).info.get("exif")
    assert meta["metadata_stripped"] is True


def _srgb_profile() -> bytes:
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


@pytest.mark.parametrize("fmt", ["jpeg", "png", "webp"])
def test_stripped_output_stays_clean_when_reencoded(template_factory, fmt):
    exif = Image.Exif()
    exif[0x010F] = "Imprint Test Camera"
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64), (10, 20, 30)).save(
        buffer, format="JPEG", exif=exif.tobytes(), icc_profile=_srgb_profile()
    )
    source = decode_image(buffer.getvalue())
    assert source.exif and source.icc_profile
    template = template_factory(format=fmt, strip_metadata=True)

    first, _ = encode_image(source.image, template, source)
    decoded = decode_image(first)
    assert not decoded.exif
    assert not decoded.icc_profile

    # Lingering info on the working image must not leak into the output either
    decoded.image.info.update(exif=source.exif, icc_profile=source.icc_profile)
    second, meta = encode_image(decoded.image, template, decoded)

    info = _reopen(second).info
    assert "exif" not in info
    assert "icc_profile" not in info
    assert meta["metadata_stripped"] is True


def test_keep_metadata_carries_exif(template_factory):
    decoded = decode_image(_jpeg_with_exif())
    resized = decoded.image.resize((32, 32))

    output, meta = encode_image(resized, template_factory(strip_metadata=False), decoded)

    img = _reopen(output)
    assert img.getexif()[0x010F] == "Imprint Test Camera"
    assert meta["metadata_stripped"] is False
