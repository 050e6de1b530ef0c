import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import MalformedOutputError, UnsupportedFormatError
from .nms import NMSConfig, SuppressionPolicy, suppress
from .types import Detection, Rect

logger = logging.getLogger(__name__)

FIXED_SCHEMA_RECORD = 7
# Records whose decoded width or height is at most this many pixels are
# reinterpreted as normalized coordinates.
DEGENERATE_BOX_SIZE = 2


class OutputFormat(Enum):
    FIXED_SCHEMA = "DetectionOutput"
    GRID_ANCHOR = "Region"
    UNSUPPORTED = "unsupported"


def classify_output_format(layer_type: str) -> OutputFormat:
    """
    Map the network's terminal layer type onto the decoder that reads it.
    """

    if layer_type == OutputFormat.FIXED_SCHEMA.value:
        return OutputFormat.FIXED_SCHEMA
    if layer_type == OutputFormat.GRID_ANCHOR.value:
        return OutputFormat.GRID_ANCHOR
    return OutputFormat.UNSUPPORTED


@dataclass(frozen=True)
class FrameGeometry:
    """
    Pixel size that normalized network coordinates are resolved against.
    """

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Frame geometry must be positive, got {self.width}x{self.height}")

    @classmethod
    def from_frame(cls, frame: np.ndarray) -> "FrameGeometry":
        h, w = frame.shape[:2]
        return cls(width=int(w), height=int(h))


@dataclass
class DetectionPostConfig:
    """
    Post-processing settings used when `detect` is called without explicit
    thresholds.
    """

    conf_threshold: float = 0.5
    # 0 disables NMS on the grid-anchor path.
    nms_threshold: float = 0.0
    # If False, boxes only suppress boxes of the same class.
    nms_across_classes: bool = False
    # Upper bound on boxes kept per NMS pass; 0 keeps all.
    max_detections: int = 0
    eta: float = 1.0
    # Darknet region outputs put an objectness column before the class
    # scores: [cx, cy, w, h, obj, class_scores...]. True skips it; None lets
    # the inference engine decide.
    region_has_objectness: Optional[bool] = None

    def __post_init__(self) -> None:
        _check_unit_interval("conf_threshold", self.conf_threshold)
        _check_unit_interval("nms_threshold", self.nms_threshold)
        if self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")
        if not 0.0 < self.eta <= 1.0:
            raise ValueError("eta must be in (0, 1]")

    @property
    def suppression_policy(self) -> SuppressionPolicy:
        if self.nms_across_classes:
            return SuppressionPolicy.ACROSS_CLASSES
        return SuppressionPolicy.PER_CLASS


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _clamp_boxes(
    left: np.ndarray,
    top: np.ndarray,
    width: np.ndarray,
    height: np.ndarray,
    frame: FrameGeometry,
) -> np.ndarray:
    left = np.clip(left, 0, frame.width - 1)
    top = np.clip(top, 0, frame.height - 1)
    width = np.maximum(1, np.minimum(width, frame.width - left))
    height = np.maximum(1, np.minimum(height, frame.height - top))
    return np.stack([left, top, width, height], axis=1)


def _to_detections(boxes: np.ndarray, scores: np.ndarray, class_ids: np.ndarray) -> List[Detection]:
    return [
        Detection(
            class_id=int(cls_id),
            confidence=float(score),
            box=Rect(int(x), int(y), int(w), int(h)),
        )
        for (x, y, w, h), score, cls_id in zip(boxes, scores, class_ids)
    ]


def _fixed_schema_rows(tensors: Sequence[np.ndarray]) -> np.ndarray:
    rows = []
    for tensor in tensors:
        t = np.asarray(tensor, dtype=np.float32)
        if t.size % FIXED_SCHEMA_RECORD != 0:
            raise MalformedOutputError(
                f"DetectionOutput tensor of shape {t.shape} is not a whole number of "
                f"{FIXED_SCHEMA_RECORD}-value records."
            )
        rows.append(t.reshape(-1, FIXED_SCHEMA_RECORD))
    if not rows:
        return np.empty((0, FIXED_SCHEMA_RECORD), dtype=np.float32)
    return np.concatenate(rows, axis=0)


def decode_detection_output(
    tensors: Sequence[np.ndarray],
    conf_threshold: float,
    frame: FrameGeometry,
) -> List[Detection]:
    """
    Decode "DetectionOutput" records.

    Every tensor is read as a flat run of rows
    [batch_id, class_id, confidence, left, top, right, bottom]. Corners are
    absolute pixels, unless the resulting box is at most two pixels wide or
    tall: such rows are taken to hold normalized corners and are scaled by
    the frame size. The network already ran NMS, so none is applied here.
    """

    rows = _fixed_schema_rows(tensors)
    rows = rows[rows[:, 2].astype(np.float64) >= conf_threshold]
    if rows.shape[0] == 0:
        return []

    raw = rows[:, 3:7]
    corners = np.trunc(raw).astype(np.int64)
    width = corners[:, 2] - corners[:, 0] + 1
    height = corners[:, 3] - corners[:, 1] + 1

    degenerate = (width <= DEGENERATE_BOX_SIZE) | (height <= DEGENERATE_BOX_SIZE)
    if degenerate.any():
        scale = np.array([frame.width, frame.height, frame.width, frame.height], dtype=np.float32)
        corners[degenerate] = np.trunc(raw[degenerate] * scale).astype(np.int64)
        width = corners[:, 2] - corners[:, 0] + 1
        height = corners[:, 3] - corners[:, 1] + 1

    boxes = _clamp_boxes(corners[:, 0], corners[:, 1], width, height, frame)
    class_ids = np.rint(rows[:, 1]).astype(np.int64)
    return _to_detections(boxes, rows[:, 2], class_ids)


def _grid_rows(tensor: np.ndarray, first_score: int) -> np.ndarray:
    t = np.asarray(tensor, dtype=np.float32)
    if t.ndim < 2:
        raise MalformedOutputError(f"Region tensor must be at least 2-D, got shape {t.shape}.")
    t = t.reshape(-1, t.shape[-1])
    if t.shape[1] <= first_score:
        raise MalformedOutputError(
            f"Region rows need {first_score} leading values plus class scores, got shape {t.shape}."
        )
    return t


def _trunc_half(values: np.ndarray) -> np.ndarray:
    # Integer halving that rounds toward zero.
    return np.sign(values) * (np.abs(values) // 2)


def decode_region(
    tensors: Sequence[np.ndarray],
    conf_threshold: float,
    frame: FrameGeometry,
    has_objectness: bool = False,
) -> List[Detection]:
    """
    Decode "Region" rows [cx, cy, w, h, class_scores...] with normalized
    geometry into candidate detections. NMS has not run on the result.
    """

    first_score = 5 if has_objectness else 4
    detections: List[Detection] = []

    for tensor in tensors:
        rows = _grid_rows(tensor, first_score)
        if rows.shape[0] == 0:
            continue

        class_scores = rows[:, first_score:]
        class_ids = np.argmax(class_scores, axis=1)
        scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

        keep = scores.astype(np.float64) >= conf_threshold
        rows, class_ids, scores = rows[keep], class_ids[keep], scores[keep]
        if rows.shape[0] == 0:
            continue

        center_x = np.trunc(rows[:, 0] * np.float32(frame.width)).astype(np.int64)
        center_y = np.trunc(rows[:, 1] * np.float32(frame.height)).astype(np.int64)
        width = np.trunc(rows[:, 2] * np.float32(frame.width)).astype(np.int64)
        height = np.trunc(rows[:, 3] * np.float32(frame.height)).astype(np.int64)

        left = center_x - _trunc_half(width)
        top = center_y - _trunc_half(height)
        boxes = _clamp_boxes(left, top, width, height, frame)
        detections.extend(_to_detections(boxes, scores, class_ids))

    return detections


class DetectionPostprocessor:
    """
    Turns raw network outputs into final detections.

    Supported layouts:
    - DetectionOutput: N x 7 rows [batch_id, class_id, conf, left, top, right, bottom]
    - Region: N x (4 + C) rows [cx, cy, w, h, class_scores...], normalized,
      followed by NMS
    """

    def __init__(self, cfg: DetectionPostConfig):
        self.cfg = cfg

    def nms_config(self, conf_threshold: float, nms_threshold: float) -> NMSConfig:
        return NMSConfig(
            score_threshold=conf_threshold,
            iou_threshold=nms_threshold,
            max_detections=self.cfg.max_detections,
            eta=self.cfg.eta,
        )

    def process(
        self,
        outputs: Sequence[np.ndarray],
        output_format: OutputFormat,
        frame: FrameGeometry,
        conf_threshold: Optional[float] = None,
        nms_threshold: Optional[float] = None,
    ) -> List[Detection]:
        conf_threshold, nms_threshold = self.resolve_thresholds(conf_threshold, nms_threshold)

        if output_format is OutputFormat.FIXED_SCHEMA:
            detections = decode_detection_output(outputs, conf_threshold, frame)
            logger.debug("Decoded %d DetectionOutput boxes", len(detections))
            return detections

        if output_format is OutputFormat.GRID_ANCHOR:
            candidates = decode_region(
                outputs, conf_threshold, frame, has_objectness=bool(self.cfg.region_has_objectness)
            )
            detections = suppress(
                candidates,
                self.nms_config(conf_threshold, nms_threshold),
                self.cfg.suppression_policy,
            )
            logger.debug("Region decode kept %d of %d candidates", len(detections), len(candidates))
            return detections

        raise UnsupportedFormatError(output_format.value)

    def resolve_thresholds(
        self,
        conf_threshold: Optional[float],
        nms_threshold: Optional[float],
    ) -> Tuple[float, float]:
        if conf_threshold is None:
            conf_threshold = self.cfg.conf_threshold
        if nms_threshold is None:
            nms_threshold = self.cfg.nms_threshold
        _check_unit_interval("conf_threshold", conf_threshold)
        _check_unit_interval("nms_threshold", nms_threshold)
        return float(conf_threshold), float(nms_threshold)
