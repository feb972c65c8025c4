import unittest
import torch
import sys
import os

# Ajout du dossier parent au path pour importer retinocortex
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from retinocortex.config import CenterSurroundConfig, PhotoreceptorConfig
from retinocortex.exceptions import ConfigurationError, GridShapeError, InvariantViolation
from retinocortex.retina import (
    PhotoreceptorLayer, CenterSurroundLayer, GanglionCell, GanglionType,
    spectral_sensitivity, cone_mosaic, create_edge_map, receptive_field_masks,
    CONE_S, CONE_M, CONE_L
)
from retinocortex import stimuli


class TestPhotoreceptors(unittest.TestCase):
    def setUp(self):
        self.h, self.w = 8, 8
        self.layer = PhotoreceptorLayer((self.h, self.w))

    def test_spectral_sensitivity(self):
        self.assertEqual(spectral_sensitivity('M', 530.0), 1.0)
        self.assertEqual(spectral_sensitivity('S', None), 1.0)
        self.assertLess(spectral_sensitivity('L', 700.0), 0.01)
        # Longueur d'onde tronquée à [380, 780]
        self.assertEqual(spectral_sensitivity('S', 100.0), spectral_sensitivity('S', 380.0))

    def test_mosaic_is_deterministic(self):
        mosaic = cone_mosaic((4, 12))
        self.assertEqual(int(mosaic[0, 0]), CONE_S)
        self.assertEqual(int(mosaic[0, 1]), CONE_M)
        self.assertEqual(int(mosaic[0, 4]), CONE_M)
        self.assertEqual(int(mosaic[0, 5]), CONE_L)
        self.assertEqual(int(mosaic[1, 9]), CONE_S)
        self.assertTrue(torch.equal(mosaic, cone_mosaic((4, 12))))

    def test_zero_input_gives_zero_activation(self):
        out = self.layer(torch.zeros(self.h, self.w))
        self.assertEqual(int(torch.count_nonzero(out['activation'])), 0)
        self.assertTrue(torch.all(out['response'] == 1.0))

    def test_first_step_from_dark(self):
        out = self.layer(torch.ones(self.h, self.w))
        # 100 + (10 - 100) * 0.3 = 73
        self.assertTrue(torch.allclose(self.layer.internal_state,
                                       torch.full((self.h, self.w), 73.0, dtype=torch.float64)))
        self.assertAlmostEqual(float(out['activation'][0, 0]), 0.3)
        self.assertAlmostEqual(float(out['response'][0, 0]), 0.7)

    def test_target_is_monotonic(self):
        dim = self.layer.target_state(0.2)
        bright = self.layer.target_state(0.8)
        self.assertTrue(torch.all(bright < dim))

    def test_out_of_range_intensity_is_clamped(self):
        high = PhotoreceptorLayer((self.h, self.w))(torch.full((self.h, self.w), 2.0))
        one = PhotoreceptorLayer((self.h, self.w))(torch.ones(self.h, self.w))
        self.assertTrue(torch.allclose(high['activation'], one['activation']))

        low = PhotoreceptorLayer((self.h, self.w))(torch.full((self.h, self.w), -1.0))
        self.assertEqual(int(torch.count_nonzero(low['activation'])), 0)

    def test_sample_matches_forward(self):
        response = self.layer.sample(2, 3, 0.7)

        other = PhotoreceptorLayer((self.h, self.w))
        out = other(torch.full((self.h, self.w), 0.7))
        self.assertAlmostEqual(response, float(out['response'][2, 3]), places=12)

        # Les autres cellules restent dans le noir
        self.assertEqual(float(self.layer.internal_state[0, 0]), 100.0)
        self.assertEqual(int(torch.count_nonzero(self.layer.adaptation_level)), 1)

    def test_sample_outside_grid(self):
        with self.assertRaises(GridShapeError):
            self.layer.sample(self.h, 0, 0.5)

    def test_stateful_and_stateless(self):
        image = torch.ones(self.h, self.w)
        first = self.layer(image)['activation']
        second = self.layer(image)['activation']
        self.assertTrue(torch.all(second > first))

        stateless = PhotoreceptorLayer((self.h, self.w), PhotoreceptorConfig(stateful=False))
        a = stateless(image)['activation']
        b = stateless(image)['activation']
        self.assertTrue(torch.equal(a, b))

    def test_reset_state(self):
        self.layer(torch.ones(self.h, self.w))
        self.layer.reset_state()
        self.assertTrue(torch.all(self.layer.internal_state == 100.0))
        self.assertEqual(int(torch.count_nonzero(self.layer.adaptation_level)), 0)

    def test_light_adaptation(self):
        image = torch.ones(self.h, self.w)
        self.assertFalse(self.layer.is_light_adapted())
        for _ in range(10):
            self.layer(image)
        self.assertFalse(self.layer.is_light_adapted())
        for _ in range(90):
            self.layer(image)
        self.assertTrue(self.layer.is_light_adapted())
        self.assertTrue(torch.all(self.layer.adaptation_level < 0.5))

    def test_white_rgb_is_uniform(self):
        stimulus = self.layer.stimulus(torch.ones(3, self.h, self.w))
        self.assertTrue(torch.allclose(stimulus, torch.ones(self.h, self.w, dtype=torch.float64)))

    def test_wavelength_map(self):
        stimulus = self.layer.stimulus(torch.ones(self.h, self.w), wavelength=420.0)
        # Cônes S plus sensibles à 420 nm que les cônes L
        self.assertAlmostEqual(float(stimulus[0, 0]), 1.0)
        self.assertLess(float(stimulus[0, 5]), float(stimulus[0, 0]))

        with self.assertRaises(GridShapeError):
            self.layer.stimulus(torch.ones(self.h, self.w), wavelength=torch.full((2, 2), 500.0))

    def test_shape_errors(self):
        with self.assertRaises(GridShapeError):
            self.layer(torch.zeros(5, 5))
        with self.assertRaises(GridShapeError):
            self.layer(torch.zeros(1, 1, self.h, self.w))
        with self.assertRaises(GridShapeError):
            self.layer(torch.zeros(3, self.h, self.w), wavelength=500.0)


class TestCenterSurround(unittest.TestCase):
    def setUp(self):
        self.h, self.w = 16, 16
        self.layer = CenterSurroundLayer((self.h, self.w))

    def test_uniform_grid_is_silent(self):
        out = self.layer(torch.full((self.h, self.w), 0.7))
        self.assertEqual(int(torch.count_nonzero(out['on'])), 0)
        self.assertEqual(int(torch.count_nonzero(out['off'])), 0)
        self.assertEqual(int(torch.count_nonzero(out['edge'])), 0)

    def test_single_point(self):
        out = self.layer(stimuli.point((self.h, self.w), (8, 8)))
        self.assertGreater(float(out['on'][8, 8]), 0.0)
        self.assertEqual(float(out['off'][8, 8]), 0.0)

        # Réponse ON maximale au point, sur toute la grille hors voisinage immédiat
        rows, cols = torch.meshgrid(torch.arange(self.h), torch.arange(self.w), indexing='ij')
        far = torch.maximum((rows - 8).abs(), (cols - 8).abs()) >= 2
        self.assertTrue(bool(torch.all(out['on'][far] < out['on'][8, 8])))

        # Le point tombe dans le pourtour de ses voisines
        self.assertGreater(float(out['off'][8, 11]), 0.0)
        self.assertEqual(float(out['on'][8, 11]), 0.0)

        # Hors du champ récepteur
        self.assertEqual(float(out['edge'][8, 13]), 0.0)
        self.assertEqual(float(out['edge'][0, 0]), 0.0)

    def test_respond_matches_forward(self):
        torch.manual_seed(0)
        grid = torch.rand(self.h, self.w, dtype=torch.float64)
        out = self.layer(grid)
        for position in [(0, 0), (0, 7), (8, 8), (15, 15), (3, 14)]:
            on = self.layer.respond(grid, position, GanglionType.ON_CENTER)
            off = self.layer.respond(grid, position, GanglionType.OFF_CENTER)
            self.assertAlmostEqual(on, float(out['on'][position]), places=9)
            self.assertAlmostEqual(off, float(out['off'][position]), places=9)

    def test_step_edge(self):
        edge = create_edge_map(stimuli.step_edge((32, 32), 'vertical', position=16))
        self.assertGreater(float(edge[4:28, 15].min()), 0.0)
        self.assertGreater(float(edge[4:28, 16].min()), 0.0)
        self.assertEqual(float(edge[:, 2].abs().max()), 0.0)
        self.assertEqual(float(edge[:, 28].abs().max()), 0.0)

    def test_invalid_radii(self):
        with self.assertRaises(ConfigurationError):
            CenterSurroundConfig(center_radius=4.0, surround_radius=2.0)
        with self.assertRaises(ConfigurationError):
            GanglionCell((0, 0), GanglionType.ON_CENTER, 0.0, 3.0)
        with self.assertRaises(InvariantViolation):
            receptive_field_masks(3.0, 2.0)

    def test_shape_error(self):
        with self.assertRaises(GridShapeError):
            self.layer(torch.zeros(8, 8))


if __name__ == '__main__':
    unittest.main()
