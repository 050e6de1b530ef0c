from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .postprocess import DetectionPostConfig


@dataclass(frozen=True)
class InputParams:
    """
    How a frame is turned into the network's input blob.

    - size: (width, height) of the network input; None falls back to the size
      the engine reports
    - mean: per-channel value subtracted before scaling
    - scale: multiplier applied after mean subtraction
    - swap_rb: swap first and last channels (BGR <-> RGB)
    - crop: center-crop after resize instead of stretching
    """

    size: Optional[Tuple[int, int]] = None
    mean: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: float = 1.0
    swap_rb: bool = False
    crop: bool = False

    def __post_init__(self) -> None:
        if self.size is not None:
            w, h = self.size
            if w <= 0 or h <= 0:
                raise ValueError(f"input size must be positive, got {self.size}")
        if self.scale <= 0:
            raise ValueError("scale must be > 0")


@dataclass(frozen=True)
class DetectionConfig:
    input: InputParams = field(default_factory=InputParams)
    post: DetectionPostConfig = field(default_factory=DetectionPostConfig)


def _require_number(payload: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _optional_bool(payload: Dict[str, Any], key: str) -> Optional[bool]:
    if key not in payload or payload[key] is None:
        return None
    return _require_bool(payload, key, False)


def _check_keys(payload: Dict[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown {where} keys: {unknown}")


def _parse_input(payload: Any) -> InputParams:
    if not isinstance(payload, dict):
        raise ValueError("input must be a JSON object")
    _check_keys(payload, {"width", "height", "mean", "scale", "swap_rb", "crop"}, "input")

    size = None
    if "width" in payload or "height" in payload:
        size = (_require_int(payload, "width"), _require_int(payload, "height"))

    mean = payload.get("mean", [0.0, 0.0, 0.0])
    if (
        not isinstance(mean, list)
        or len(mean) != 3
        or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in mean)
    ):
        raise ValueError("mean must be a list of 3 numbers")

    return InputParams(
        size=size,
        mean=(float(mean[0]), float(mean[1]), float(mean[2])),
        scale=_require_number(payload, "scale", 1.0),
        swap_rb=_require_bool(payload, "swap_rb", False),
        crop=_require_bool(payload, "crop", False),
    )


def _parse_post(payload: Any) -> DetectionPostConfig:
    if not isinstance(payload, dict):
        raise ValueError("post must be a JSON object")
    _check_keys(
        payload,
        {
            "conf_threshold",
            "nms_threshold",
            "nms_across_classes",
            "max_detections",
            "eta",
            "region_has_objectness",
        },
        "post",
    )
    return DetectionPostConfig(
        conf_threshold=_require_number(payload, "conf_threshold", 0.5),
        nms_threshold=_require_number(payload, "nms_threshold", 0.0),
        nms_across_classes=_require_bool(payload, "nms_across_classes", False),
        max_detections=_require_int(payload, "max_detections", 0),
        eta=_require_number(payload, "eta", 1.0),
        region_has_objectness=_optional_bool(payload, "region_has_objectness"),
    )


def load_detection_config(path: Path) -> DetectionConfig:
    """
    Load a JSON detection config:

        {
          "input": {"width": 416, "height": 416, "scale": 0.00392, "swap_rb": true},
          "post": {"conf_threshold": 0.5, "nms_threshold": 0.4}
        }

    Both sections are optional; omitted values keep their defaults.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detection config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detection config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detection config must be a JSON object")
    _check_keys(payload, {"input", "post"}, "detection config")

    return DetectionConfig(
        input=_parse_input(payload.get("input", {})),
        post=_parse_post(payload.get("post", {})),
    )
