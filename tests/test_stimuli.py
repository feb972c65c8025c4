import unittest
import torch
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from retinocortex import stimuli
from retinocortex.exceptions import ConfigurationError


class TestStimuli(unittest.TestCase):
    def setUp(self):
        self.shape = (32, 32)

    def test_lines(self):
        line = stimuli.horizontal_line(self.shape)
        self.assertEqual(line.dtype, torch.float64)
        self.assertEqual(int(line.sum()), 32)
        self.assertTrue(torch.all(line[16] == 1.0))

        thick = stimuli.vertical_line(self.shape, col=4, thickness=3)
        self.assertEqual(int(thick.sum()), 3 * 32)
        self.assertTrue(torch.all(thick[:, 3:6] == 1.0))

        diagonal = stimuli.diagonal_line(self.shape, 'right')
        self.assertEqual(float(diagonal[16, 16]), 1.0)
        self.assertEqual(float(diagonal[15, 17]), 1.0)
        self.assertEqual(float(diagonal[17, 17]), 0.0)

    def test_shapes(self):
        ring = stimuli.circle(self.shape, radius=8)
        self.assertGreater(int(ring.sum()), 0)
        self.assertEqual(float(ring[16, 16]), 0.0)

        disk = stimuli.circle(self.shape, radius=8, filled=True)
        self.assertEqual(float(disk[16, 16]), 1.0)

        rect = stimuli.rectangle(self.shape, (4, 4), (20, 24))
        self.assertEqual(float(rect[4, 10]), 1.0)
        self.assertEqual(float(rect[12, 24]), 1.0)
        self.assertEqual(float(rect[12, 12]), 0.0)

        self.assertGreater(int(stimuli.triangle(self.shape).sum()), 0)
        self.assertEqual(float(stimuli.cross(self.shape)[16, 16]), 1.0)

    def test_patterns(self):
        edge = stimuli.step_edge(self.shape, 'horizontal', position=10)
        self.assertEqual(float(edge[9, 0]), 0.0)
        self.assertEqual(float(edge[10, 0]), 1.0)

        board = stimuli.checkerboard(self.shape, square_size=4)
        self.assertEqual(float(board[0, 0]), 1.0)
        self.assertEqual(float(board[0, 4]), 0.0)
        self.assertEqual(float(stimuli.uniform(self.shape, 0.25).mean()), 0.25)

    def test_errors(self):
        with self.assertRaises(ConfigurationError):
            stimuli.diagonal_line(self.shape, 'up')
        with self.assertRaises(ConfigurationError):
            stimuli.horizontal_line(self.shape, thickness=0)
        with self.assertRaises(ConfigurationError):
            stimuli.triangle(self.shape, vertices=[(0, 0), (5, 5)])


if __name__ == '__main__':
    unittest.main()
