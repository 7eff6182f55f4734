"""
Templates Module

Named, reusable bundles of transformation parameters and their service.
"""

from imprint.modules.templates.models import (
    Template,
    FitMode,
    CropPosition,
    WatermarkPosition,
    OutputFormat,
)

__all__ = ["Template", "FitMode", "CropPosition", "WatermarkPosition", "OutputFormat"]
