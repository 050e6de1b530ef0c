from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence

import numpy as np

from .types import Detection, Rect


class SuppressionPolicy(Enum):
    # Every box competes with every other box regardless of class.
    ACROSS_CLASSES = "across_classes"
    # Boxes only suppress boxes of their own class.
    PER_CLASS = "per_class"


@dataclass
class NMSConfig:
    score_threshold: float = 0.5
    # 0 disables suppression entirely.
    iou_threshold: float = 0.0
    # 0 keeps every surviving box.
    max_detections: int = 0
    # Adaptive threshold factor; 1.0 keeps the threshold fixed.
    eta: float = 1.0


def rect_iou(a: Rect, b: Rect) -> float:
    """
    Intersection over union of two integer rects.
    """

    inter_w = min(a.right, b.right) - max(a.left, b.left)
    inter_h = min(a.bottom, b.bottom) - max(a.top, b.top)
    if inter_w <= 0 or inter_h <= 0:
        return 0.0
    inter = inter_w * inter_h
    union = a.area + b.area - inter
    return inter / union if union > 0 else 0.0


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xywh and scores shape (N,).
    Returns indices of kept boxes, highest score first.

    Boxes below `cfg.score_threshold` never take part. Ties in score keep
    their input order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = boxes.astype(np.float64)
    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = x1 + boxes[:, 2]
    y2 = y1 + boxes[:, 3]
    areas = boxes[:, 2] * boxes[:, 3]

    # Scores are compared in float64, the precision of the emitted confidences.
    candidates = np.flatnonzero(scores.astype(np.float64) >= cfg.score_threshold)
    order = candidates[np.argsort(-scores[candidates], kind="stable")]
    threshold = cfg.iou_threshold
    keep = []

    while order.size > 0:
        i = order[0]
        keep.append(i)
        if cfg.max_detections > 0 and len(keep) >= cfg.max_detections:
            break

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[order[1:]] - inter
        iou = np.where(union > 0, inter / np.maximum(union, 1e-6), 0.0)

        inds = np.where(iou <= threshold)[0]
        order = order[inds + 1]

        if cfg.eta < 1.0 and threshold > 0.5:
            threshold *= cfg.eta

    return np.array(keep, dtype=np.int64)


def _as_arrays(detections: Sequence[Detection]):
    boxes = np.array([d.box.as_xywh() for d in detections], dtype=np.int64).reshape(-1, 4)
    scores = np.array([d.confidence for d in detections], dtype=np.float64)
    return boxes, scores


def suppress(
    detections: Sequence[Detection],
    cfg: NMSConfig,
    policy: SuppressionPolicy = SuppressionPolicy.PER_CLASS,
) -> List[Detection]:
    """
    Run NMS over decoded candidates.

    With `PER_CLASS` the candidates are grouped by class id and each group is
    suppressed on its own; groups come out in ascending class id order. With
    `ACROSS_CLASSES` a single pass runs over everything and the result is
    ordered by descending confidence.

    `cfg.iou_threshold == 0` returns the candidates unchanged.
    """

    if not cfg.iou_threshold:
        return list(detections)
    if not detections:
        return []

    if policy is SuppressionPolicy.ACROSS_CLASSES:
        boxes, scores = _as_arrays(detections)
        return [detections[i] for i in nms(boxes, scores, cfg)]

    class2indices: Dict[int, List[int]] = {}
    for idx, det in enumerate(detections):
        if det.confidence >= cfg.score_threshold:
            class2indices.setdefault(det.class_id, []).append(idx)

    kept: List[Detection] = []
    for class_id in sorted(class2indices):
        local = [detections[i] for i in class2indices[class_id]]
        boxes, scores = _as_arrays(local)
        kept.extend(local[i] for i in nms(boxes, scores, cfg))
    return kept
