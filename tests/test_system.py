import dataclasses
import unittest
import torch
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from retinocortex import VisualPathway, VisionConfig, FeatureReport, GridShapeError
from retinocortex.config import SHAPE_TEMPLATES
from retinocortex.cortex.orientation import ORIENTATION_LABELS
from retinocortex.integrated_system import LAYER_NAMES
from retinocortex import stimuli


class TestVisualPathway(unittest.TestCase):
    def setUp(self):
        self.shape = (64, 64)
        self.pathway = VisualPathway(VisionConfig())

    def test_blank_image(self):
        report = self.pathway.process(torch.zeros(self.shape))

        self.assertIsInstance(report, FeatureReport)
        for name in LAYER_NAMES:
            self.assertEqual(report.activity_counts[name], 0)
        for label in ORIENTATION_LABELS:
            self.assertEqual(report.orientation_strengths[label], 0.0)
        self.assertEqual(report.dominant_orientation, 'horizontal')

        self.assertEqual(tuple(report.shape_confidences), SHAPE_TEMPLATES)
        for value in report.shape_confidences.values():
            self.assertEqual(value, 0.0)
        self.assertEqual(report.dominant_shape, 'complex')
        self.assertEqual(report.edge_strength, 0.0)
        self.assertEqual(report.total_activation, 0.0)

    def test_horizontal_line(self):
        out = self.pathway(stimuli.horizontal_line(self.shape))
        report = out['report']

        self.assertEqual(report.activity_counts['photoreceptor'], 64)
        self.assertGreater(report.activity_counts['ganglion'], 0)
        self.assertGreater(report.activity_counts['orientation'], 0)

        self.assertGreater(report.horizontal, report.vertical)
        self.assertGreater(report.horizontal, report.diagonal_right)
        self.assertGreater(report.horizontal, report.diagonal_left)
        self.assertEqual(report.dominant_orientation, 'horizontal')
        self.assertAlmostEqual(report.edge_strength, sum(report.orientation_strengths.values()))

        for key in ('photoreceptors', 'ganglion', 'orientation', 'contours', 'shape_candidates'):
            self.assertIn(key, out)

    def test_vertical_line(self):
        report = self.pathway.process(stimuli.vertical_line(self.shape))
        self.assertEqual(report.dominant_orientation, 'vertical')

    def test_report_is_immutable(self):
        report = self.pathway.process(stimuli.horizontal_line(self.shape))
        with self.assertRaises(TypeError):
            report.orientation_strengths['horizontal'] = 0.0
        with self.assertRaises(TypeError):
            report.shape_confidences['circle'] = 1.0
        with self.assertRaises(dataclasses.FrozenInstanceError):
            report.dominant_shape = 'circle'

        as_dict = report.as_dict()
        self.assertEqual(as_dict['dominant_orientation'], 'horizontal')
        self.assertIn('fragment_count', as_dict['contour_metrics'])

    def test_state_persists_between_calls(self):
        image = stimuli.horizontal_line(self.shape)
        first = self.pathway.process(image)
        second = self.pathway.process(image)
        self.assertGreater(second.total_activation, first.total_activation)

        self.pathway.reset_state()
        again = self.pathway.process(image)
        self.assertAlmostEqual(again.total_activation, first.total_activation)

    def test_rgb_input(self):
        line = stimuli.horizontal_line(self.shape)
        report = self.pathway.process(line.unsqueeze(0).repeat(3, 1, 1))
        self.assertEqual(report.dominant_orientation, 'horizontal')

    def test_wrong_grid_shape(self):
        with self.assertRaises(GridShapeError):
            self.pathway.process(torch.zeros(32, 32))
        with self.assertRaises(GridShapeError):
            self.pathway.process(torch.zeros(2, 64, 64))

    def test_small_grid(self):
        pathway = VisualPathway(VisionConfig(height=16, width=24))
        report = pathway.process(stimuli.point((16, 24), (8, 12)))
        self.assertGreater(report.activity_counts['ganglion'], 0)
        self.assertEqual(report.activity_counts['photoreceptor'], 1)


if __name__ == '__main__':
    unittest.main()
