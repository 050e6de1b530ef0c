import itertools
import unittest

import numpy as np

from det_kit.nms import NMSConfig, SuppressionPolicy, nms, rect_iou, suppress
from det_kit.types import Detection, Rect


def _det(class_id: int, confidence: float, left: int, top: int, width: int, height: int) -> Detection:
    return Detection(class_id=class_id, confidence=confidence, box=Rect(left, top, width, height))


def _random_detections(seed: int, count: int = 60):
    rng = np.random.default_rng(seed)
    dets = []
    for _ in range(count):
        x, y = rng.integers(0, 80, size=2)
        w, h = rng.integers(5, 40, size=2)
        dets.append(_det(int(rng.integers(0, 3)), round(float(rng.uniform(0.5, 1.0)), 3), int(x), int(y), int(w), int(h)))
    return dets


class TestRectIou(unittest.TestCase):
    def test_partial_overlap(self) -> None:
        self.assertAlmostEqual(rect_iou(Rect(0, 0, 100, 100), Rect(0, 0, 100, 80)), 0.8)

    def test_disjoint_and_touching(self) -> None:
        self.assertEqual(rect_iou(Rect(0, 0, 10, 10), Rect(20, 20, 5, 5)), 0.0)
        self.assertEqual(rect_iou(Rect(0, 0, 10, 10), Rect(10, 0, 10, 10)), 0.0)

    def test_identical(self) -> None:
        self.assertEqual(rect_iou(Rect(3, 4, 5, 6), Rect(3, 4, 5, 6)), 1.0)


class TestNms(unittest.TestCase):
    def test_empty(self) -> None:
        keep = nms(np.zeros((0, 4)), np.zeros((0,)), NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.shape, (0,))

    def test_keeps_highest_of_overlapping_pair(self) -> None:
        boxes = np.array([[0, 0, 100, 80], [0, 0, 100, 100], [200, 200, 10, 10]])
        scores = np.array([0.7, 0.9, 0.6], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(score_threshold=0.5, iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [1, 2])

    def test_equal_scores_keep_input_order(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [50, 50, 10, 10], [100, 100, 10, 10]])
        scores = np.array([0.8, 0.8, 0.8], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(score_threshold=0.5, iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0, 1, 2])

    def test_max_detections(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [50, 50, 10, 10], [100, 100, 10, 10]])
        scores = np.array([0.6, 0.9, 0.8], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(score_threshold=0.5, iou_threshold=0.5, max_detections=2))
        self.assertEqual(keep.tolist(), [1, 2])

    def test_eta_tightens_threshold(self) -> None:
        boxes = np.array([[0, 0, 50, 50], [200, 0, 100, 100], [200, 0, 100, 60]])
        scores = np.array([0.9, 0.8, 0.7], dtype=np.float32)
        fixed = nms(boxes, scores, NMSConfig(score_threshold=0.5, iou_threshold=0.8))
        adaptive = nms(boxes, scores, NMSConfig(score_threshold=0.5, iou_threshold=0.8, eta=0.5))
        self.assertEqual(fixed.tolist(), [0, 1, 2])
        self.assertEqual(adaptive.tolist(), [0, 1])


class TestSuppress(unittest.TestCase):
    def test_overlapping_same_class_keeps_best(self) -> None:
        best = _det(0, 0.9, 0, 0, 100, 100)
        worse = _det(0, 0.7, 0, 0, 100, 80)
        out = suppress([worse, best], NMSConfig(score_threshold=0.5, iou_threshold=0.5))
        self.assertEqual(out, [best])

    def test_zero_threshold_passes_through(self) -> None:
        dets = [_det(1, 0.6, 0, 0, 10, 10), _det(0, 0.9, 0, 0, 10, 10), _det(1, 0.3, 5, 5, 10, 10)]
        out = suppress(dets, NMSConfig(score_threshold=0.5, iou_threshold=0.0))
        self.assertEqual(out, dets)
        self.assertIsNot(out, dets)

    def test_per_class_does_not_cross_suppress(self) -> None:
        cls1 = _det(1, 0.95, 0, 0, 100, 100)
        cls0 = _det(0, 0.6, 0, 0, 100, 100)
        out = suppress([cls1, cls0], NMSConfig(score_threshold=0.5, iou_threshold=0.5), SuppressionPolicy.PER_CLASS)
        # grouped by ascending class id
        self.assertEqual(out, [cls0, cls1])

    def test_across_classes_suppresses_other_classes(self) -> None:
        cls1 = _det(1, 0.95, 0, 0, 100, 100)
        cls0 = _det(0, 0.6, 0, 0, 100, 100)
        out = suppress(
            [cls0, cls1], NMSConfig(score_threshold=0.5, iou_threshold=0.5), SuppressionPolicy.ACROSS_CLASSES
        )
        self.assertEqual(out, [cls1])

    def test_low_scores_dropped(self) -> None:
        low = _det(0, 0.3, 0, 0, 10, 10)
        high = _det(0, 0.8, 50, 50, 10, 10)
        for policy in SuppressionPolicy:
            out = suppress([low, high], NMSConfig(score_threshold=0.5, iou_threshold=0.5), policy)
            self.assertEqual(out, [high])

    def test_boundary_scores_agree_across_policies(self) -> None:
        on_threshold = _det(0, 0.75, 0, 0, 10, 10)
        below = _det(1, float(np.float32(0.9)), 50, 50, 10, 10)
        for policy in SuppressionPolicy:
            out = suppress([on_threshold], NMSConfig(score_threshold=0.75, iou_threshold=0.5), policy)
            self.assertEqual(out, [on_threshold], msg=policy.name)
            out = suppress([below], NMSConfig(score_threshold=0.9, iou_threshold=0.5), policy)
            self.assertEqual(out, [], msg=policy.name)

    def test_idempotent(self) -> None:
        cfg = NMSConfig(score_threshold=0.5, iou_threshold=0.3)
        for policy in SuppressionPolicy:
            once = suppress(_random_detections(1), cfg, policy)
            twice = suppress(once, cfg, policy)
            self.assertEqual(set(once), set(twice))

    def test_across_classes_leaves_no_overlap_above_threshold(self) -> None:
        cfg = NMSConfig(score_threshold=0.5, iou_threshold=0.3)
        out = suppress(_random_detections(2), cfg, SuppressionPolicy.ACROSS_CLASSES)
        for a, b in itertools.combinations(out, 2):
            self.assertLessEqual(rect_iou(a.box, b.box), 0.3)
        self.assertEqual(out, sorted(out, key=lambda d: -d.confidence))

    def test_per_class_groups_in_class_order(self) -> None:
        cfg = NMSConfig(score_threshold=0.5, iou_threshold=0.3)
        out = suppress(_random_detections(3), cfg, SuppressionPolicy.PER_CLASS)
        class_ids = [d.class_id for d in out]
        self.assertEqual(class_ids, sorted(class_ids))
        for a, b in itertools.combinations(out, 2):
            if a.class_id == b.class_id:
                self.assertLessEqual(rect_iou(a.box, b.box), 0.3)

    def test_empty(self) -> None:
        self.assertEqual(suppress([], NMSConfig(iou_threshold=0.5)), [])


if __name__ == "__main__":
    unittest.main()
