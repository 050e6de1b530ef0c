from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Rect:
    """
    Integer pixel rectangle (left, top, width, height).

    `right` and `bottom` are exclusive, so a rect clamped to a frame satisfies
    `right <= frame_width` and `bottom <= frame_height`.
    """

    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_xywh(self) -> Tuple[int, int, int, int]:
        return self.left, self.top, self.width, self.height

    def as_xyxy(self) -> Tuple[int, int, int, int]:
        return self.left, self.top, self.right, self.bottom


@dataclass(frozen=True)
class Detection:
    """
    Single decoded detection in frame pixel coordinates.
    """

    class_id: int
    confidence: float
    box: Rect

    def as_xyxy(self) -> Tuple[int, int, int, int]:
        return self.box.as_xyxy()
