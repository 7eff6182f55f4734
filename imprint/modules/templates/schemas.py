from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Annotated, List, Optional, Tuple
from datetime import datetime

from imprint.modules.templates.models import (
    CropPosition,
    FitMode,
    OutputFormat,
    WatermarkPosition,
)

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"

# Bounded field types shared by create/update/read schemas
Dimension = Annotated[int, Field(ge=1, le=8000)]
CropOffset = Annotated[int, Field(ge=0)]
CropExtent = Annotated[int, Field(ge=1)]
HexColor = Annotated[str, Field(pattern=HEX_COLOR_PATTERN)]
ToneLevel = Annotated[float, Field(ge=-100, le=100)]
HueDegrees = Annotated[float, Field(ge=0, le=360)]
BlurSigma = Annotated[float, Field(ge=0.3, le=1000)]
SharpenAmount = Annotated[float, Field(ge=0, le=100)]
Padding = Annotated[int, Field(ge=0, le=200)]
BorderWidth = Annotated[int, Field(ge=0, le=50)]
CornerRadius = Annotated[int, Field(ge=0, le=100)]
ShadowBlur = Annotated[int, Field(ge=0, le=100)]
ShadowOffset = Annotated[int, Field(ge=-100, le=100)]
Opacity = Annotated[float, Field(ge=0.0, le=1.0)]
FontSize = Annotated[int, Field(ge=8, le=200)]
Quality = Annotated[int, Field(ge=1, le=100)]

CROP_FIELDS = ("crop_x", "crop_y", "crop_width", "crop_height")


def _normalize_format(value):
    if isinstance(value, str):
        value = value.strip().lower()
        if value == "jpg":
            return OutputFormat.JPEG.value
    return value


class TemplateBase(BaseModel):
    """Every transformation parameter, bounded and typed."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True, extra="forbid")

    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    # Geometry
    width: Dimension
    height: Dimension
    fit: FitMode = FitMode.COVER
    crop_position: CropPosition = CropPosition.CENTER
    crop_x: Optional[CropOffset] = None
    crop_y: Optional[CropOffset] = None
    crop_width: Optional[CropExtent] = None
    crop_height: Optional[CropExtent] = None
    background_color: Optional[HexColor] = None

    # Tone
    brightness: Optional[ToneLevel] = None
    contrast: Optional[ToneLevel] = None
    saturation: Optional[ToneLevel] = None
    hue: Optional[HueDegrees] = None
    blur: Optional[BlurSigma] = None
    sharpen: Optional[SharpenAmount] = None

    # Frame
    box_enabled: bool = False
    box_color: HexColor = "#ffffff"
    box_padding: Padding = 20
    box_border_width: BorderWidth = 0
    box_border_color: HexColor = "#000000"
    box_border_radius: CornerRadius = 0
    box_shadow_enabled: bool = False
    box_shadow_blur: ShadowBlur = 10
    box_shadow_offset_x: ShadowOffset = 5
    box_shadow_offset_y: ShadowOffset = 5
    box_shadow_opacity: Opacity = 0.3
    box_shadow_color: HexColor = "#000000"

    # Watermark
    watermark_enabled: bool = False
    watermark_text: Optional[str] = Field(default=None, max_length=100)
    watermark_position: WatermarkPosition = WatermarkPosition.BOTTOM_RIGHT
    watermark_opacity: Opacity = 0.5
    watermark_size: Optional[FontSize] = None

    # Output
    format: OutputFormat = OutputFormat.JPEG
    quality: Quality = 80
    progressive: bool = True
    optimize_scans: bool = True
    strip_metadata: bool = True

    # Flags
    is_active: bool = True
    is_default: bool = False

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Template name must be at least 2 characters long")
        return v

    @field_validator("format", mode="before")
    @classmethod
    def accept_jpg_alias(cls, v):
        return _normalize_format(v)

    @model_validator(mode="after")
    def crop_is_all_or_nothing(self):
        present = [getattr(self, f) is not None for f in CROP_FIELDS]
        if any(present) and not all(present):
            raise ValueError(
                "crop_x, crop_y, crop_width and crop_height must be given together"
            )
        return self

    @property
    def crop_region(self) -> Optional[Tuple[int, int, int, int]]:
        """(x, y, width, height) of the manual crop, if any."""
        if self.crop_x is None:
            return None
        return (self.crop_x, self.crop_y, self.crop_width, self.crop_height)


class TemplateCreate(TemplateBase):
    """Body of POST /templates."""


class TemplateUpdate(BaseModel):
    """Partial update; merged onto the stored row and re-validated whole."""

    model_config = ConfigDict(use_enum_values=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    width: Optional[Dimension] = None
    height: Optional[Dimension] = None
    fit: Optional[FitMode] = None
    crop_position: Optional[CropPosition] = None
    crop_x: Optional[CropOffset] = None
    crop_y: Optional[CropOffset] = None
    crop_width: Optional[CropExtent] = None
    crop_height: Optional[CropExtent] = None
    background_color: Optional[HexColor] = None

    brightness: Optional[ToneLevel] = None
    contrast: Optional[ToneLevel] = None
    saturation: Optional[ToneLevel] = None
    hue: Optional[HueDegrees] = None
    blur: Optional[BlurSigma] = None
    sharpen: Optional[SharpenAmount] = None

    box_enabled: Optional[bool] = None
    box_color: Optional[HexColor] = None
    box_padding: Optional[Padding] = None
    box_border_width: Optional[BorderWidth] = None
    box_border_color: Optional[HexColor] = None
    box_border_radius: Optional[CornerRadius] = None
    box_shadow_enabled: Optional[bool] = None
    box_shadow_blur: Optional[ShadowBlur] = None
    box_shadow_offset_x: Optional[ShadowOffset] = None
    box_shadow_offset_y: Optional[ShadowOffset] = None
    box_shadow_opacity: Optional[Opacity] = None
    box_shadow_color: Optional[HexColor] = None

    watermark_enabled: Optional[bool] = None
    watermark_text: Optional[str] = Field(default=None, max_length=100)
    watermark_position: Optional[WatermarkPosition] = None
    watermark_opacity: Optional[Opacity] = None
    watermark_size: Optional[FontSize] = None

    format: Optional[OutputFormat] = None
    quality: Optional[Quality] = None
    progressive: Optional[bool] = None
    optimize_scans: Optional[bool] = None
    strip_metadata: Optional[bool] = None

    is_active: Optional[bool] = None
    is_default: Optional[bool] = None

    @field_validator("format", mode="before")
    @classmethod
    def accept_jpg_alias(cls, v):
        return _normalize_format(v)


class TemplateRead(TemplateBase):
    """
    Frozen view of a stored template.

    This is what the pipeline receives: one immutable snapshot per run.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True, extra="ignore")

    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DuplicateTemplateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class TemplateListResponse(BaseModel):
    templates: List[TemplateRead]
    pagination: Pagination


class RecentUpload(BaseModel):
    id: str
    original_filename: str
    status: str
    created_at: datetime


class TemplateStats(BaseModel):
    template: TemplateRead
    total_uploads: int
    recent_uploads: List[RecentUpload]
