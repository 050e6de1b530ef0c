from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name: override the auto-selected image input
    - output_names: outputs to fetch; None fetches all of them
    - layer_type: detection layout the graph emits ("Region" or "DetectionOutput").
      ONNX graphs do not name it, so it has to be declared.
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_names: Optional[Sequence[str]] = None
    layer_type: str = "Region"


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects an NCHW float32 blob, typically shaped (1, 3, H, W).
    """

    # Exported graphs emit class scores right after the box.
    region_has_objectness = False

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.cfg = cfg
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)
        logger.info("Loaded ONNX model %s with providers %s", self.model_path, self.providers_in_use)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_names = list(cfg.output_names or [o.name for o in self.session.get_outputs()])

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def terminal_layer_type(self) -> str:
        return self.cfg.layer_type

    def has_named_input(self, name: str) -> bool:
        return any(i.name == name for i in self.session.get_inputs())

    def configured_input_size(self) -> Optional[Tuple[int, int]]:
        shape = next((i.shape for i in self.session.get_inputs() if i.name == self.input_name), None)
        if shape is None:
            return None
        # Only static NCHW inputs pin the size.
        if len(shape) == 4 and all(isinstance(d, int) for d in shape[2:]):
            return int(shape[3]), int(shape[2])
        return None

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> List[np.ndarray]:
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        return list(self.session.run(self.output_names, inputs))
