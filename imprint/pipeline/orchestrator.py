"""
Pipeline Orchestrator

Runs decode -> geometry -> tone -> frame -> watermark -> encode over one
image and one frozen template. Pure with respect to persistence: it never
touches the database or storage, and never raises past run_pipeline().
"""

import io
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from imprint.core.exceptions import ImprintError, PipelineStageError
from imprint.core.logging import get_logger
from imprint.core.metrics import pipeline_total_duration, track_stage_latency
from imprint.modules.templates.schemas import TemplateRead
from imprint.pipeline.stages import (
    apply_frame,
    apply_geometry,
    apply_tone,
    apply_watermark,
    decode_image,
    encode_image,
)

logger = get_logger(__name__)

class ProcessingMetadata(BaseModel):
    """What a pipeline run reports about its output."""
    passthrough: bool = False
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    size: int = 0
    stages: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    total_duration_ms: int = 0


@dataclass
class PipelineResult:
    """Success carries output bytes; failure carries the typed error."""
    ok: bool
    metadata: ProcessingMetadata
    output: Optional[bytes] = None
    error: Optional[ImprintError] = None
    failed_stage: Optional[str] = None


class _Run:
    """Bookkeeping for one pipeline execution."""

    def __init__(self, metadata: ProcessingMetadata):
        self.metadata = metadata
        self.current_stage: Optional[str] = None

    def stage(self, name: str, func: Callable, *args):
        self.current_stage = name
        start = time.perf_counter()
        with track_stage_latency(name):
            result = func(*args)
        duration_ms = int((time.perf_counter() - start) * 1000)

        stage_meta: Dict[str, Any] = {"duration_ms": duration_ms}
        if isinstance(result, tuple) and isinstance(result[1], dict):
            stage_meta.update(result[1])
            if "warning" in result[1]:
                self.metadata.warnings.append(result[1]["warning"])
        self.metadata.stages[name] = stage_meta
        return result


def _probe(data: bytes) -> Dict[str, Any]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return {
                "width": img.width,
                "height": img.height,
                "format": img.format.lower() if img.format else None,
            }
    except (UnidentifiedImageError, OSError):
        return {}


def run_pipeline(data: bytes, template: Optional[TemplateRead]) -> PipelineResult:
    """
    Transform raw bytes according to template.

    Without a template the input passes through unchanged with its
    dimensions probed. Decode/geometry/tone/encode failures come back as a
    failed result; frame/watermark failures only add warnings.
    """
    started = time.perf_counter()
    metadata = ProcessingMetadata()

    if template is None:
        probe = _probe(data)
        metadata.passthrough = True
        metadata.original_width = metadata.width = probe.get("width")
        metadata.original_height = metadata.height = probe.get("height")
        metadata.format = probe.get("format")
        metadata.size = len(data)
        return PipelineResult(ok=True, metadata=metadata, output=data)

    run = _Run(metadata)
    try:
        decoded = run.stage("decode", decode_image, data)
        metadata.original_width = decoded.width
        metadata.original_height = decoded.height
        metadata.stages["decode"].update(
            width=decoded.width, height=decoded.height, format=decoded.format
        )

        image, _ = run.stage("geometry", apply_geometry, decoded.image, template)
        image, _ = run.stage("tone", apply_tone, image, template)
        image, _ = run.stage("frame", apply_frame, image, template)
        image, _ = run.stage("watermark", apply_watermark, image, template)
        output, encoded = run.stage("encode", encode_image, image, template, decoded)
    except ImprintError as e:
        return _failed(metadata, e, run.current_stage, started)
    except Exception as e:
        error = PipelineStageError(
            f"{run.current_stage} stage failed: {e}",
            stage=run.current_stage or "pipeline",
            details={"error_type": type(e).__name__}
        )
        return _failed(metadata, error, run.current_stage, started)

    metadata.width = encoded["width"]
    metadata.height = encoded["height"]
    metadata.format = encoded["format"]
    metadata.size = encoded["size"]
    metadata.total_duration_ms = int((time.perf_counter() - started) * 1000)
    pipeline_total_duration.labels(status="success").observe(time.perf_counter() - started)

    logger.info(
        "pipeline_completed",
        template_id=template.id,
        width=metadata.width,
        height=metadata.height,
        format=metadata.format,
        size=metadata.size,
        warnings=len(metadata.warnings),
        duration_ms=metadata.total_duration_ms
    )
    return PipelineResult(ok=True, metadata=metadata, output=output)


def _failed(
    metadata: ProcessingMetadata,
    error: ImprintError,
    stage: Optional[str],
    started: float
) -> PipelineResult:
    error.stage = error.stage or stage
    metadata.total_duration_ms = int((time.perf_counter() - started) * 1000)
    pipeline_total_duration.labels(status="error").observe(time.perf_counter() - started)

    logger.warning(
        "pipeline_failed",
        stage=error.stage,
        error=error.message,
        code=error.code
    )
    return PipelineResult(
        ok=False,
        metadata=metadata,
        error=error,
        failed_stage=error.stage
    )
