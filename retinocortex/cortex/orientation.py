"""
Module orientation.py - Sélectivité à l'orientation dans V1
Cellules simples à champ récepteur allongé, cellules complexes par pooling
local, résumé des forces par orientation et orientation dominante.
"""

import logging
import math
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..config import OrientationConfig, angular_difference, is_diagonal, validate_grid_shape
from ..exceptions import GridShapeError
from ..retina.photoreceptors import GridLike, as_grid


logger = logging.getLogger(__name__)


class Orientation(Enum):
    """
    Étiquettes des quatre orientations canoniques.

    Convention mathématique du plan image : dx = décalage de colonne,
    dy = -décalage de ligne. 0° est donc allongé le long des lignes.
    """
    HORIZONTAL = 'horizontal'
    DIAGONAL_RIGHT = 'diagonal_right'
    VERTICAL = 'vertical'
    DIAGONAL_LEFT = 'diagonal_left'

    @property
    def degrees(self) -> float:
        return _CANONICAL_DEGREES[self]

    @classmethod
    def from_degrees(cls, degrees: float) -> 'Orientation':
        """Étiquette canonique la plus proche (égalité : la première de 0/45/90/135)."""
        return min(_CANONICAL_DEGREES,
                   key=lambda o: angular_difference(degrees, _CANONICAL_DEGREES[o]))


_CANONICAL_DEGREES = {
    Orientation.HORIZONTAL: 0.0,
    Orientation.DIAGONAL_RIGHT: 45.0,
    Orientation.VERTICAL: 90.0,
    Orientation.DIAGONAL_LEFT: 135.0,
}

# Ordre des forces dans le rapport
ORIENTATION_LABELS = ('horizontal', 'vertical', 'diagonal_right', 'diagonal_left')


def strip_weights(theta_degrees: float,
                  rf_radius: int,
                  perp_sigma: float,
                  perp_cutoff: float,
                  dtype: torch.dtype = torch.float64,
                  device: str = 'cpu') -> torch.Tensor:
    """
    Poids d'une cellule simple d'orientation θ sur le disque de rayon rf_radius.

    Gaussienne en `perp` tronquée à |perp| < perp_cutoff, nulle hors de
    |along| < rf_radius.

    Returns:
        Noyau (2r+1, 2r+1)
    """
    theta = math.radians(theta_degrees)
    # Arrondi : cos(90°) doit valoir exactement 0 pour les seuils stricts
    cos_t, sin_t = round(math.cos(theta), 12), round(math.sin(theta), 12)

    offsets = torch.arange(-rf_radius, rf_radius + 1, dtype=dtype, device=device)
    rows, cols = torch.meshgrid(offsets, offsets, indexing='ij')

    dx = cols
    dy = -rows

    # Rotation des coordonnées
    along = dx * cos_t + dy * sin_t
    perp = -dx * sin_t + dy * cos_t

    inside = (dx ** 2 + dy ** 2 <= rf_radius ** 2) & (along.abs() < rf_radius) & (perp.abs() < perp_cutoff)
    weights = torch.exp(-perp ** 2 / (2 * perp_sigma ** 2))
    return torch.where(inside, weights, torch.zeros_like(weights))


def disk_mask(rf_radius: int, dtype: torch.dtype = torch.float64,
              device: str = 'cpu') -> torch.Tensor:
    offsets = torch.arange(-rf_radius, rf_radius + 1, dtype=dtype, device=device)
    rows, cols = torch.meshgrid(offsets, offsets, indexing='ij')
    return (rows ** 2 + cols ** 2 <= rf_radius ** 2).to(dtype)


def dominant_orientation(strengths: Mapping[str, float], margin: float = 0.06) -> str:
    """
    Orientation dominante à partir des forces normalisées.

    La meilleure orientation d'axe (horizontal l'emporte sur vertical à
    égalité) est retenue si `axe * (1 + margin) > diagonale`, inégalité
    stricte : à la limite exacte de la marge, la meilleure diagonale
    l'emporte (diagonal_right à égalité). Sans aucune réponse diagonale,
    l'axe est retenu, et des forces toutes nulles donnent 'horizontal'.
    """
    horizontal = strengths.get('horizontal', 0.0)
    vertical = strengths.get('vertical', 0.0)
    right = strengths.get('diagonal_right', 0.0)
    left = strengths.get('diagonal_left', 0.0)

    axis_label, axis_value = ('horizontal', horizontal) if horizontal >= vertical else ('vertical', vertical)
    diag_label, diag_value = ('diagonal_right', right) if right >= left else ('diagonal_left', left)

    if diag_value <= 0.0 or axis_value * (1.0 + margin) > diag_value:
        return axis_label
    return diag_label


class OrientationLayer(nn.Module):
    """
    Couche de cellules simples et complexes de V1.

    Chaque orientation est calculée indépendamment à partir de ses seuls
    échantillons du champ récepteur de la grille amont (carte de contours).
    """

    def __init__(self,
                 grid_shape: Tuple[int, int],
                 config: Optional[OrientationConfig] = None,
                 dtype: torch.dtype = torch.float64,
                 device: str = 'cpu'):

        super().__init__()

        self.height, self.width = validate_grid_shape(grid_shape)
        self.config = config or OrientationConfig()
        self.dtype = dtype
        self.device = device

        cfg = self.config
        self.orientations = cfg.orientations
        self.n_orientations = len(self.orientations)
        self.kernel_size = 2 * cfg.rf_radius + 1

        def bank(angles):
            return torch.stack([
                strip_weights(a, cfg.rf_radius, cfg.perp_sigma, cfg.perp_cutoff, dtype, device).reshape(-1)
                for a in angles
            ])

        # Bandes excitatrices et bandes orthogonales (K, k*k)
        self.register_buffer('weights', bank(self.orientations))
        self.register_buffer('orthogonal_weights', bank([(a + 90.0) % 180.0 for a in self.orientations]))
        self.register_buffer('disk', disk_mask(cfg.rf_radius, dtype, device).reshape(1, -1))

        ones = torch.ones((1, 1, self.height, self.width), dtype=dtype, device=device)
        self.register_buffer('valid', self._patches(ones))

        angles = torch.tensor([math.radians(2 * a) for a in self.orientations], dtype=dtype, device=device)
        self.register_buffer('cos2', torch.cos(angles).view(-1, 1, 1))
        self.register_buffer('sin2', torch.sin(angles).view(-1, 1, 1))

        self.diagonal_factors = [
            cfg.diagonal_normalization if is_diagonal(a) else 1.0 for a in self.orientations
        ]

    def _patches(self, grid: torch.Tensor) -> torch.Tensor:
        return F.unfold(grid, kernel_size=self.kernel_size, padding=self.kernel_size // 2)[0]

    def _prepare(self, edge_grid: GridLike) -> torch.Tensor:
        grid = as_grid(edge_grid, self.dtype, self.device)
        if grid.shape != (self.height, self.width):
            raise GridShapeError(f"Grille {tuple(grid.shape)} != {(self.height, self.width)}")
        return grid

    def simple_responses(self, edge_grid: GridLike) -> torch.Tensor:
        """
        Activations des cellules simples.

        Returns:
            Tenseur (n_orientations, H, W), rectifié
        """
        grid = self._prepare(edge_grid)
        cfg = self.config

        patches = self._patches(grid.reshape(1, 1, self.height, self.width))

        if not cfg.inhibitory_surround:
            # Forme littérale : somme pondérée normalisée par le nombre d'échantillons
            n = self.disk @ self.valid
            weighted = self.weights @ (patches * self.valid)
            activation = torch.where(n > 0, weighted / n.clamp(min=1), 0.0)
            return torch.relu(cfg.gain * activation).reshape(self.n_orientations, self.height, self.width)

        # Échantillons décalés de la valeur de la cellule
        shifted = (patches - grid.reshape(1, -1)) * self.valid

        def mean(weights):
            total = weights @ self.valid
            return torch.where(total > 0, (weights @ shifted) / total.clamp(min=1e-12), 0.0)

        excitation = mean(self.weights)
        inhibition = torch.maximum(mean(self.disk), mean(self.orthogonal_weights))

        activation = cfg.gain * (excitation - inhibition)
        return torch.relu(activation).reshape(self.n_orientations, self.height, self.width)

    def respond(self, edge_grid: GridLike, position: Tuple[int, int], orientation: float) -> float:
        """
        Activation d'une cellule simple (calcul de référence, échantillon par
        échantillon).

        Args:
            edge_grid: Carte de contours (H, W)
            position: (ligne, colonne)
            orientation: Orientation préférée en degrés

        Returns:
            Activation rectifiée
        """
        grid = self._prepare(edge_grid)
        cfg = self.config
        row, col = position
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise GridShapeError(f"Position {position} hors de la grille")

        r = cfg.rf_radius
        kernel = strip_weights(orientation, r, cfg.perp_sigma, cfg.perp_cutoff, self.dtype, self.device)
        orthogonal = strip_weights((orientation + 90.0) % 180.0, r, cfg.perp_sigma,
                                   cfg.perp_cutoff, self.dtype, self.device)
        ref = float(grid[row, col])

        sums = {'w': 0.0, 'wE': 0.0, 'o': 0.0, 'oE': 0.0, 'n': 0, 'E': 0.0}
        for dr in range(-r, r + 1):
            for dc in range(-r, r + 1):
                rr, cc = row + dr, col + dc
                if not (0 <= rr < self.height and 0 <= cc < self.width):
                    continue
                if dr * dr + dc * dc > r * r:
                    continue
                w = float(kernel[dr + r, dc + r])
                o = float(orthogonal[dr + r, dc + r])
                value = float(grid[rr, cc])
                if cfg.inhibitory_surround:
                    value -= ref
                sums['w'] += w
                sums['wE'] += w * value
                sums['o'] += o
                sums['oE'] += o * value
                sums['n'] += 1
                sums['E'] += value

        if sums['n'] == 0:
            return 0.0

        if not cfg.inhibitory_surround:
            return max(cfg.gain * sums['wE'] / sums['n'], 0.0)

        excitation = sums['wE'] / sums['w'] if sums['w'] > 0 else 0.0
        flank = sums['oE'] / sums['o'] if sums['o'] > 0 else 0.0
        inhibition = max(sums['E'] / sums['n'], flank)
        return max(cfg.gain * (excitation - inhibition), 0.0)

    def orientation_strengths(self, simple: torch.Tensor) -> Dict[float, float]:
        """Somme des activations par orientation, diagonales normalisées."""
        raw = simple.sum(dim=(1, 2))
        return {
            angle: float(raw[k]) * self.diagonal_factors[k]
            for k, angle in enumerate(self.orientations)
        }

    def label_strengths(self, strengths: Mapping[float, float]) -> Dict[str, float]:
        """Regroupe les forces par étiquette canonique."""
        labelled = {label: 0.0 for label in ORIENTATION_LABELS}
        for angle, value in strengths.items():
            labelled[Orientation.from_degrees(angle).value] += value
        return labelled

    def forward(self, edge_grid: GridLike) -> Dict[str, object]:
        """
        Réponse de la couche.

        Args:
            edge_grid: Carte de contours rectifiée (H, W)

        Returns:
            Dictionnaire avec 'simple', 'complex', 'magnitude',
            'orientation_map', 'coherence_map', 'raw_strengths',
            'strengths' (par angle) et 'label_strengths'
        """
        cfg = self.config
        simple = self.simple_responses(edge_grid)

        # Cellules complexes : tolérance de position par max-pooling local
        pool = cfg.complex_pool
        complex_cells = F.max_pool2d(simple.unsqueeze(0), kernel_size=pool,
                                     stride=1, padding=pool // 2)[0]

        magnitude = simple.max(dim=0).values

        # Vecteur résultant à angle doublé
        x_component = (simple * self.cos2).sum(dim=0)
        y_component = (simple * self.sin2).sum(dim=0)
        orientation_map = torch.rad2deg(0.5 * torch.atan2(y_component, x_component)) % 180.0
        total = simple.sum(dim=0)
        coherence_map = torch.where(
            total > 0, torch.sqrt(x_component ** 2 + y_component ** 2) / total.clamp(min=1e-12), 0.0)

        raw = simple.sum(dim=(1, 2))
        strengths = self.orientation_strengths(simple)
        labelled = self.label_strengths(strengths)

        logger.debug("Orientation : %d cellules actives, forces %s",
                     int((magnitude > 0).sum()), labelled)

        return {
            'simple': simple,
            'complex': complex_cells,
            'magnitude': magnitude,
            'orientation_map': orientation_map,
            'coherence_map': coherence_map,
            'raw_strengths': {a: float(raw[k]) for k, a in enumerate(self.orientations)},
            'strengths': strengths,
            'label_strengths': labelled,
        }

    def dominant(self, label_strengths: Mapping[str, float]) -> str:
        return dominant_orientation(label_strengths, self.config.axis_preference_margin)
