"""
Errors raised while turning network output into detections.

Every error here is fatal for the current call: the pipeline never returns a
partial detection list.
"""


class DetectionError(Exception):
    """Base class for detection decode failures."""


class UnconfiguredInputError(DetectionError, ValueError):
    """Input size was never set and the engine cannot report one."""


class UnsupportedFormatError(DetectionError):
    """The network's terminal layer type is not a known detection output."""

    def __init__(self, layer_type: str):
        super().__init__(f'Unknown output layer type: "{layer_type}"')
        self.layer_type = layer_type


class MalformedOutputError(DetectionError, ValueError):
    """An output tensor does not fit the expected per-record layout."""
