import tempfile
import unittest
from pathlib import Path

import numpy as np

from det_kit.metadata import load_class_names
from det_kit.types import Detection, Rect
from det_kit.visualize import color_for_class_id, draw_detections


class TestLoadClassNames(unittest.TestCase):
    def _write(self, name: str, text: str) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / name
        path.write_text(text, encoding="utf-8")
        return path

    def test_names_mapping(self) -> None:
        path = self._write("metadata.yaml", "task: detect\nnames:\n  0: person\n  1: 'bicycle'\n  # skip\n  2: \"car\"\n")
        self.assertEqual(load_class_names(path), {0: "person", 1: "bicycle", 2: "car"})

    def test_plain_list(self) -> None:
        path = self._write("coco.names", "person\nbicycle\n\ncar\n")
        self.assertEqual(load_class_names(path), {0: "person", 1: "bicycle", 2: "car"})


class TestDrawDetections(unittest.TestCase):
    def test_draws_on_copy(self) -> None:
        image = np.zeros((60, 80, 3), dtype=np.uint8)
        dets = [Detection(class_id=0, confidence=0.9, box=Rect(10, 20, 30, 25))]
        out = draw_detections(image, dets, class_names={0: "person"})
        self.assertEqual(out.shape, image.shape)
        self.assertTrue(out.any())
        self.assertFalse(image.any())

    def test_rejects_grayscale(self) -> None:
        with self.assertRaises(ValueError):
            draw_detections(np.zeros((10, 10), dtype=np.uint8), [])

    def test_colors_are_deterministic(self) -> None:
        self.assertEqual(color_for_class_id(3), color_for_class_id(3))
        self.assertEqual(color_for_class_id(250), color_for_class_id(250))


if __name__ == "__main__":
    unittest.main()
