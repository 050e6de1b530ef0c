"""
Object-detection output decoding and non-maximum suppression.

Turns raw network outputs in the "DetectionOutput" (N x 7 rows) or "Region"
(YOLO-style grid rows) layout into labeled, scored pixel boxes. Decoding and
NMS only need NumPy; OpenCV is used for blob preprocessing, the OpenCV DNN
backend and drawing.
"""

from .types import Detection, Rect
from .errors import DetectionError, MalformedOutputError, UnconfiguredInputError, UnsupportedFormatError
from .nms import NMSConfig, SuppressionPolicy, nms, rect_iou, suppress
from .postprocess import (
    DetectionPostConfig,
    DetectionPostprocessor,
    FrameGeometry,
    OutputFormat,
    classify_output_format,
    decode_detection_output,
    decode_region,
)
from .config import DetectionConfig, InputParams, load_detection_config
from .runtime import DetectionPipeline, InferenceEngine, blob_from_image, load_pipeline, find_project_root, resolve_path
from .metadata import load_class_names
from .visualize import draw_detections

__all__ = [
    "Detection",
    "Rect",
    "DetectionError",
    "MalformedOutputError",
    "UnconfiguredInputError",
    "UnsupportedFormatError",
    "NMSConfig",
    "SuppressionPolicy",
    "nms",
    "rect_iou",
    "suppress",
    "DetectionPostConfig",
    "DetectionPostprocessor",
    "FrameGeometry",
    "OutputFormat",
    "classify_output_format",
    "decode_detection_output",
    "decode_region",
    "DetectionConfig",
    "InputParams",
    "load_detection_config",
    "DetectionPipeline",
    "InferenceEngine",
    "blob_from_image",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "load_class_names",
    "draw_detections",
]
