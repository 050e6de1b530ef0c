from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OpenCVDnnBackendConfig:
    """
    Configuration for OpenCV DNN inference.

    - config_path: network description (.cfg, .prototxt, .pbtxt) if the
      weights file does not carry one
    - input_size: (width, height) reported as the configured input size
    - backend_id/target_id: cv2.dnn.DNN_BACKEND_* / cv2.dnn.DNN_TARGET_* values
    """

    config_path: Optional[PathLike] = None
    input_size: Optional[Tuple[int, int]] = None
    backend_id: Optional[int] = None
    target_id: Optional[int] = None


class OpenCVDnnBackend:
    """
    Inference engine over a `cv2.dnn.Net`.

    Returns every unconnected output as a NumPy array.
    """

    # OpenCV's Region layer emits [cx, cy, w, h, objectness, class_scores...].
    region_has_objectness = True

    def __init__(self, model_path: PathLike, cfg: OpenCVDnnBackendConfig = OpenCVDnnBackendConfig()):
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required for the OpenCV DNN backend. Install with `pip install opencv-python`.") from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))
        config = str(cfg.config_path) if cfg.config_path is not None else ""
        net = cv2.dnn.readNet(str(self.model_path), config)
        logger.info("Loaded OpenCV DNN model %s", self.model_path)
        self._setup(net, cfg)

    @classmethod
    def from_net(cls, net: Any, cfg: OpenCVDnnBackendConfig = OpenCVDnnBackendConfig()) -> "OpenCVDnnBackend":
        """Wrap an already constructed network."""

        backend = cls.__new__(cls)
        backend.model_path = None
        backend._setup(net, cfg)
        return backend

    def _setup(self, net: Any, cfg: OpenCVDnnBackendConfig) -> None:
        self.net = net
        self.cfg = cfg
        if cfg.backend_id is not None:
            net.setPreferableBackend(cfg.backend_id)
        if cfg.target_id is not None:
            net.setPreferableTarget(cfg.target_id)
        self.output_names = list(net.getUnconnectedOutLayersNames())
        self._graph_input_size = self._read_graph_input_size()

    def _read_graph_input_size(self) -> Optional[Tuple[int, int]]:
        import cv2  # type: ignore

        try:
            in_shapes, _ = self.net.getLayerShapes([], 0)
        except cv2.error:
            logger.debug("Network input shape is not static")
            return None
        if len(in_shapes) == 0:
            return None
        # Only a 4-D NCHW input pins the size.
        shape = [int(d) for d in np.asarray(in_shapes[0]).ravel()]
        if len(shape) != 4 or shape[2] <= 0 or shape[3] <= 0:
            return None
        return shape[3], shape[2]

    def terminal_layer_type(self) -> str:
        names = self.net.getLayerNames()
        last = self.net.getLayer(self.net.getLayerId(names[-1]))
        return str(last.type)

    def has_named_input(self, name: str) -> bool:
        return self.net.getLayer(0).outputNameToIndex(name) != -1

    def configured_input_size(self) -> Optional[Tuple[int, int]]:
        if self.cfg.input_size is not None:
            return self.cfg.input_size
        return self._graph_input_size

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> List[np.ndarray]:
        self.net.setInput(blob)
        for name, value in (extra_inputs or {}).items():
            self.net.setInput(value, name)
        return [np.asarray(out) for out in self.net.forward(self.output_names)]
