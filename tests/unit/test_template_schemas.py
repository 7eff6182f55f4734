import pytest
from pydantic import ValidationError

from imprint.modules.templates.schemas import TemplateCreate, TemplateRead, TemplateUpdate


def _create(**overrides):
    data = {"name": "Banner", "width": 1200, "height": 400}
    data.update(overrides)
    return TemplateCreate(**data)


def test_defaults_are_applied():
    template = _create()

    assert template.fit == "cover"
    assert template.crop_position == "center"
    assert template.format == "jpeg"
    assert template.quality == 80
    assert template.progressive is True
    assert template.strip_metadata is True
    assert template.box_enabled is False
    assert template.crop_region is None


def test_jpg_is_accepted_as_jpeg():
    assert _create(format="jpg").format == "jpeg"
    assert _create(format="JPG").format == "jpeg"
    assert TemplateUpdate(format="jpg").format == "jpeg"


def test_name_is_stripped():
    assert _create(name="  Banner  ").name == "Banner"
    with pytest.raises(ValidationError):
        _create(name="   x ")


@pytest.mark.parametrize("field,value", [
    ("width", 0),
    ("height", 8001),
    ("quality", 101),
    ("quality", 0),
    ("brightness", -101),
    ("hue", 361),
    ("blur", 0.1),
    ("box_padding", 201),
    ("box_shadow_opacity", 1.5),
    ("watermark_size", 4),
    ("box_color", "red"),
    ("background_color", "#12345"),
    ("fit", "stretch"),
    ("format", "gif"),
])
def test_out_of_range_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        _create(**{field: value})


def test_short_hex_colors_are_accepted():
    assert _create(box_color="#fff").box_color == "#fff"


def test_crop_is_all_or_nothing():
    with pytest.raises(ValidationError):
        _create(crop_x=0, crop_y=0, crop_width=100)

    template = _create(crop_x=10, crop_y=20, crop_width=100, crop_height=50)
    assert template.crop_region == (10, 20, 100, 50)


def test_unknown_fields_are_rejected():
    with pytest.raises(ValidationError):
        _create(sepia=True)


def test_read_model_is_frozen():
    template = TemplateRead(id="t1", name="Frozen", width=10, height=10)
    with pytest.raises(ValidationError):
        template.width = 20
