import unittest
import torch
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from retinocortex.config import OrientationConfig
from retinocortex.exceptions import GridShapeError
from retinocortex.cortex.orientation import (
    Orientation, OrientationLayer, ORIENTATION_LABELS, dominant_orientation, strip_weights
)
from retinocortex.retina import create_edge_map
from retinocortex import stimuli


class TestOrientationHelpers(unittest.TestCase):
    def test_strip_weights(self):
        kernel = strip_weights(0.0, rf_radius=5, perp_sigma=1.0, perp_cutoff=2.0)
        self.assertEqual(kernel.shape, (11, 11))
        self.assertEqual(float(kernel[5, 5]), 1.0)
        self.assertEqual(float(kernel[5, 9]), 1.0)
        # |along| < rf_radius
        self.assertEqual(float(kernel[5, 10]), 0.0)
        # |perp| < perp_cutoff
        self.assertAlmostEqual(float(kernel[4, 5]), float(torch.exp(torch.tensor(-0.5))))
        self.assertEqual(float(kernel[3, 5]), 0.0)

        vertical = strip_weights(90.0, rf_radius=5, perp_sigma=1.0, perp_cutoff=2.0)
        self.assertTrue(torch.allclose(vertical, kernel.T))

    def test_orientation_labels(self):
        self.assertIs(Orientation.from_degrees(0.0), Orientation.HORIZONTAL)
        self.assertIs(Orientation.from_degrees(44.0), Orientation.DIAGONAL_RIGHT)
        self.assertIs(Orientation.from_degrees(100.0), Orientation.VERTICAL)
        self.assertIs(Orientation.from_degrees(170.0), Orientation.HORIZONTAL)
        # Égalité : la première de 0/45/90/135
        self.assertIs(Orientation.from_degrees(22.5), Orientation.HORIZONTAL)
        self.assertEqual(Orientation.DIAGONAL_LEFT.degrees, 135.0)

    def test_dominant_orientation(self):
        zeros = {label: 0.0 for label in ORIENTATION_LABELS}
        self.assertEqual(dominant_orientation(zeros), 'horizontal')

        tie = dict(zeros, horizontal=1.0, vertical=1.0)
        self.assertEqual(dominant_orientation(tie), 'horizontal')

        # Marge de préférence des axes
        close = dict(zeros, horizontal=1.0, diagonal_right=1.05)
        self.assertEqual(dominant_orientation(close), 'horizontal')
        clear = dict(zeros, horizontal=1.0, diagonal_right=1.07)
        self.assertEqual(dominant_orientation(clear), 'diagonal_right')

        # Limite exacte de la marge : la diagonale l'emporte
        boundary = dict(zeros, vertical=2.0, diagonal_left=3.0)
        self.assertEqual(dominant_orientation(boundary, margin=0.5), 'diagonal_left')
        below = dict(boundary, diagonal_left=2.9)
        self.assertEqual(dominant_orientation(below, margin=0.5), 'vertical')

        diagonals = dict(zeros, diagonal_right=2.0, diagonal_left=2.0)
        self.assertEqual(dominant_orientation(diagonals), 'diagonal_right')
        self.assertEqual(dominant_orientation(dict(zeros, diagonal_left=0.5)), 'diagonal_left')


class TestOrientationLayer(unittest.TestCase):
    def setUp(self):
        self.shape = (64, 64)
        self.layer = OrientationLayer(self.shape)

    def _strengths(self, image):
        out = self.layer(create_edge_map(image))
        return out, out['label_strengths']

    def _assert_dominant(self, image, expected):
        out, strengths = self._strengths(image)
        for label in ORIENTATION_LABELS:
            if label != expected:
                self.assertGreater(strengths[expected], strengths[label])
        self.assertEqual(self.layer.dominant(strengths), expected)

    def test_horizontal_line(self):
        self._assert_dominant(stimuli.horizontal_line(self.shape), 'horizontal')

    def test_vertical_line(self):
        self._assert_dominant(stimuli.vertical_line(self.shape), 'vertical')

    def test_diagonal_lines(self):
        self._assert_dominant(stimuli.diagonal_line(self.shape, 'right'), 'diagonal_right')
        self._assert_dominant(stimuli.diagonal_line(self.shape, 'left'), 'diagonal_left')

    def test_transposed_input_swaps_axes(self):
        _, horizontal = self._strengths(stimuli.horizontal_line(self.shape))
        _, vertical = self._strengths(stimuli.vertical_line(self.shape))
        self.assertAlmostEqual(horizontal['horizontal'], vertical['vertical'])
        self.assertAlmostEqual(horizontal['vertical'], vertical['horizontal'])

    def test_uniform_input_is_silent(self):
        out = self.layer(torch.full(self.shape, 3.0))
        self.assertEqual(int(torch.count_nonzero(out['simple'])), 0)
        for value in out['label_strengths'].values():
            self.assertEqual(value, 0.0)
        self.assertEqual(self.layer.dominant(out['label_strengths']), 'horizontal')

    def test_outputs(self):
        out, _ = self._strengths(stimuli.cross(self.shape))
        self.assertEqual(out['simple'].shape, (4, 64, 64))
        self.assertTrue(torch.all(out['simple'] >= 0))
        self.assertTrue(torch.all(out['complex'] >= out['simple']))
        self.assertTrue(torch.all(out['orientation_map'] >= 0))
        self.assertTrue(torch.all(out['orientation_map'] < 180))
        self.assertTrue(torch.all(out['coherence_map'] <= 1.0 + 1e-9))

        # Diagonales normalisées
        self.assertAlmostEqual(out['strengths'][45.0], out['raw_strengths'][45.0] / 2.25)
        self.assertEqual(out['strengths'][0.0], out['raw_strengths'][0.0])

    def test_respond_matches_simple_responses(self):
        torch.manual_seed(1)
        grid = torch.rand(16, 16, dtype=torch.float64) * 10

        for inhibitory in (True, False):
            layer = OrientationLayer((16, 16), OrientationConfig(inhibitory_surround=inhibitory))
            simple = layer.simple_responses(grid)
            for k, angle in enumerate(layer.orientations):
                for position in [(0, 0), (8, 8), (15, 3), (2, 13)]:
                    expected = layer.respond(grid, position, angle)
                    self.assertAlmostEqual(float(simple[(k,) + position]), expected, places=9)

    def test_custom_orientations(self):
        layer = OrientationLayer((16, 16), OrientationConfig(orientations=(0.0, 30.0, 60.0, 90.0, 120.0, 150.0)))
        out = layer(create_edge_map(stimuli.horizontal_line((16, 16))))
        self.assertEqual(out['simple'].shape[0], 6)
        self.assertEqual(set(out['label_strengths']), set(ORIENTATION_LABELS))

    def test_shape_error(self):
        with self.assertRaises(GridShapeError):
            self.layer(torch.zeros(16, 16))


if __name__ == '__main__':
    unittest.main()
