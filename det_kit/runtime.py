from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .config import DetectionConfig, InputParams, load_detection_config
from .errors import UnconfiguredInputError, UnsupportedFormatError
from .metadata import load_class_names
from .postprocess import (
    DetectionPostConfig,
    DetectionPostprocessor,
    FrameGeometry,
    OutputFormat,
    classify_output_format,
)
from .types import Detection
from .visualize import draw_detections

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Faster-RCNN / R-FCN graphs take a second input describing the resized image;
# their box outputs are relative to the network input size, not the frame.
IMAGE_INFO_INPUT = "im_info"
IMAGE_INFO_SCALE = 1.6

OPENCV_SUFFIXES = {".caffemodel", ".weights", ".pb", ".xml", ".t7", ".net", ".cfg", ".prototxt"}


class InferenceEngine(Protocol):
    # True when "Region" rows carry an objectness column before the class scores.
    region_has_objectness: bool

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> List[np.ndarray]:
        ...

    def terminal_layer_type(self) -> str:
        ...

    def has_named_input(self, name: str) -> bool:
        ...

    def configured_input_size(self) -> Optional[Tuple[int, int]]:
        ...


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, the project
      root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def blob_from_image(image: np.ndarray, params: InputParams, size: Tuple[int, int]) -> np.ndarray:
    """
    Resize, mean-subtract and scale an image into an NCHW float32 blob.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for blob_from_image(). Install with `pip install opencv-python`.") from e

    return cv2.dnn.blobFromImage(
        image,
        scalefactor=params.scale,
        size=size,
        mean=params.mean,
        swapRB=params.swap_rb,
        crop=params.crop,
    )


PreprocessFn = Callable[[np.ndarray, InputParams, Tuple[int, int]], np.ndarray]


class DetectionPipeline:
    """
    Frame in, detections out: preprocess -> inference -> decode -> NMS.

    The output layout is fixed by the network, so it is read from the engine
    once here. Frames are OpenCV-style `np.ndarray` images and detections come
    back in frame pixel coordinates.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        *,
        backend_name: Optional[str] = None,
        input_params: Optional[InputParams] = None,
        post_cfg: Optional[DetectionPostConfig] = None,
        preprocess_fn: Optional[PreprocessFn] = None,
        class_names: Optional[Dict[int, str]] = None,
    ):
        self.engine = engine
        self.backend_name = backend_name
        self.input_params = input_params if input_params is not None else InputParams()
        if post_cfg is None:
            post_cfg = DetectionPostConfig()
        if post_cfg.region_has_objectness is None:
            post_cfg = replace(post_cfg, region_has_objectness=bool(engine.region_has_objectness))
        self.post = DetectionPostprocessor(post_cfg)
        self._preprocess_fn = preprocess_fn or blob_from_image
        self.class_names = class_names

        self.layer_type = engine.terminal_layer_type()
        self.output_format = classify_output_format(self.layer_type)
        self.uses_image_info = engine.has_named_input(IMAGE_INFO_INPUT)
        logger.debug(
            "Pipeline output layer %r -> %s (image info: %s)",
            self.layer_type,
            self.output_format.name,
            self.uses_image_info,
        )

    @property
    def nms_across_classes(self) -> bool:
        return self.post.cfg.nms_across_classes

    @nms_across_classes.setter
    def nms_across_classes(self, value: bool) -> None:
        self.post.cfg = replace(self.post.cfg, nms_across_classes=bool(value))

    def input_size(self) -> Tuple[int, int]:
        size = self.input_params.size
        if size is None:
            size = self.engine.configured_input_size()
        if size is None:
            raise UnconfiguredInputError("Input size not specified")
        return int(size[0]), int(size[1])

    def _check_frame(self, frame: np.ndarray) -> None:
        if frame is None or not hasattr(frame, "shape"):
            raise TypeError("frame must be a NumPy array.")
        if frame.ndim not in (2, 3) or frame.shape[0] == 0 or frame.shape[1] == 0:
            raise ValueError(f"Expected image shape (H, W[, C]), got {getattr(frame, 'shape', None)}")

    def predict(self, frame: np.ndarray) -> List[np.ndarray]:
        """
        Run the network on a frame and return its raw output tensors.
        """

        self._check_frame(frame)
        size = self.input_size()
        blob = self._preprocess_fn(frame, self.input_params, size)

        extra_inputs = None
        if self.uses_image_info:
            width, height = size
            extra_inputs = {IMAGE_INFO_INPUT: np.array([[height, width, IMAGE_INFO_SCALE]], dtype=np.float32)}

        return list(self.engine.infer(blob, extra_inputs))

    def frame_geometry(self, frame: np.ndarray) -> FrameGeometry:
        if self.uses_image_info:
            width, height = self.input_size()
            return FrameGeometry(width=width, height=height)
        return FrameGeometry.from_frame(frame)

    def detect(
        self,
        frame: np.ndarray,
        conf_threshold: Optional[float] = None,
        nms_threshold: Optional[float] = None,
    ) -> List[Detection]:
        """
        Detect objects in a frame.

        Args:
            frame: image as (H, W[, C]) array
            conf_threshold: minimum confidence, defaults to the post config
            nms_threshold: NMS IoU threshold, 0 disables NMS; defaults to the
                post config. Only used for Region outputs.
        """

        conf_threshold, nms_threshold = self.post.resolve_thresholds(conf_threshold, nms_threshold)
        if self.output_format is OutputFormat.UNSUPPORTED:
            raise UnsupportedFormatError(self.layer_type)

        outputs = self.predict(frame)
        geometry = self.frame_geometry(frame)
        logger.debug("Decoding %d output(s) against %dx%d", len(outputs), geometry.width, geometry.height)
        return self.post.process(outputs, self.output_format, geometry, conf_threshold, nms_threshold)

    def __call__(self, frame: np.ndarray) -> List[Detection]:
        return self.detect(frame)

    def draw(self, frame: np.ndarray, detections: Sequence[Detection], **kwargs: Any) -> np.ndarray:
        return draw_detections(frame, detections, class_names=self.class_names, **kwargs)


def load_pipeline(
    model_path: PathLike,
    *,
    config_path: Optional[PathLike] = None,
    model_config_path: Optional[PathLike] = None,
    class_names_path: Optional[PathLike] = None,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    config: Optional[DetectionConfig] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_layer_type: str = "Region",
    opencv_backend_id: Optional[int] = None,
    opencv_target_id: Optional[int] = None,
) -> DetectionPipeline:
    """
    Create a detection pipeline for a model on disk.

        pipe = load_pipeline("models/yolov3.weights", model_config_path="models/yolov3.cfg",
                             config_path="models/yolov3.json")

    Args:
        model_path: weights/model file; relative paths resolve against the project root
        config_path: optional JSON detection config (see `load_detection_config`)
        model_config_path: network description for OpenCV (.cfg, .prototxt, .pbtxt)
        class_names_path: optional class-names file
        backend: "opencv" or "onnxruntime"; None infers it from the extension
        config: detection config object, used when `config_path` is not given
    """

    resolved = resolve_path(model_path, root=root)
    if config_path is not None:
        config = load_detection_config(resolve_path(config_path, root=root))
    if config is None:
        config = DetectionConfig()

    class_names = None
    if class_names_path is not None:
        class_names = load_class_names(resolve_path(class_names_path, root=root))

    chosen = backend
    if chosen is None:
        suffix = resolved.suffix.lower()
        if suffix == ".onnx":
            chosen = "onnxruntime"
        elif suffix in OPENCV_SUFFIXES:
            chosen = "opencv"
        else:
            raise ValueError(
                f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly."
            )

    chosen = chosen.lower()
    if chosen == "opencv":
        from .backends.opencv_dnn_backend import OpenCVDnnBackend, OpenCVDnnBackendConfig

        cv_backend = OpenCVDnnBackend(
            resolved,
            OpenCVDnnBackendConfig(
                config_path=resolve_path(model_config_path, root=root) if model_config_path else None,
                input_size=config.input.size,
                backend_id=opencv_backend_id,
                target_id=opencv_target_id,
            ),
        )
        return DetectionPipeline(
            cv_backend,
            backend_name="opencv",
            input_params=config.input,
            post_cfg=config.post,
            class_names=class_names,
        )

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        ort_backend = OnnxRuntimeBackend(
            resolved,
            OnnxRuntimeBackendConfig(providers=onnx_providers, layer_type=onnx_layer_type),
        )
        return DetectionPipeline(
            ort_backend,
            backend_name="onnxruntime",
            input_params=config.input,
            post_cfg=config.post,
            class_names=class_names,
        )

    raise ValueError(f"Unsupported backend: {backend!r}")
