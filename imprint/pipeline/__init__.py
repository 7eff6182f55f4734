"""
Imprint Transformation Pipeline

Synchronous stages run in order over one decoded image:
1. Geometry - crop and resize by fit mode
2. Tone - brightness/saturation/hue, contrast, blur, sharpen
3. Frame - padded, bordered, shadowed box (degrades on failure)
4. Watermark - text overlay (degrades on failure)
5. Encode - jpeg/png/webp/avif with quality and metadata policy
"""

from imprint.pipeline.orchestrator import PipelineResult, ProcessingMetadata, run_pipeline

__all__ = ["PipelineResult", "ProcessingMetadata", "run_pipeline"]
