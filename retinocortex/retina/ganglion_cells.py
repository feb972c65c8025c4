"""
Module ganglion_cells.py - Cellules ganglionnaires centre-pourtour
Antagonisme spatial ON/OFF : disque central contre anneau périphérique,
moyennes restreintes aux échantillons dans la grille.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..config import CenterSurroundConfig, validate_grid_shape
from ..exceptions import ConfigurationError, GridShapeError, InvariantViolation
from .photoreceptors import GridLike, as_grid


logger = logging.getLogger(__name__)


class GanglionType(Enum):
    ON_CENTER = 'on_center'
    OFF_CENTER = 'off_center'


@dataclass(frozen=True)
class GanglionCell:
    """Cellule centre-pourtour à une position donnée."""

    position: Tuple[int, int]
    cell_type: GanglionType
    center_radius: float
    surround_radius: float

    def __post_init__(self):
        if not self.surround_radius > self.center_radius > 0:
            raise ConfigurationError(
                f"Rayons invalides : centre {self.center_radius}, pourtour {self.surround_radius}")


def receptive_field_masks(center_radius: float,
                          surround_radius: float,
                          dtype: torch.dtype = torch.float64,
                          device: str = 'cpu') -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Masques binaires du centre (d <= rc) et du pourtour (rc < d <= rs).

    Returns:
        (center, surround), chacun de taille (2r+1, 2r+1) avec r = floor(rs)
    """
    if not surround_radius > center_radius > 0:
        raise InvariantViolation(
            f"Rayons invalides atteignant le calcul : {center_radius}, {surround_radius}")

    r = int(math.floor(surround_radius))
    offsets = torch.arange(-r, r + 1, dtype=dtype, device=device)
    y, x = torch.meshgrid(offsets, offsets, indexing='ij')
    d = torch.sqrt(x ** 2 + y ** 2)

    center = (d <= center_radius).to(dtype)
    surround = ((d > center_radius) & (d <= surround_radius)).to(dtype)
    return center, surround


class CenterSurroundLayer(nn.Module):
    """
    Couche de cellules ganglionnaires ON et OFF, une de chaque type par
    position de la grille.

    Les champs récepteurs débordant de la grille sont tronqués : seuls les
    échantillons dans la grille comptent, ni repliement ni remplissage.
    """

    def __init__(self,
                 grid_shape: Tuple[int, int],
                 config: Optional[CenterSurroundConfig] = None,
                 dtype: torch.dtype = torch.float64,
                 device: str = 'cpu'):

        super().__init__()

        self.height, self.width = validate_grid_shape(grid_shape)
        self.config = config or CenterSurroundConfig()
        self.dtype = dtype
        self.device = device

        center, surround = receptive_field_masks(
            self.config.center_radius, self.config.surround_radius, dtype, device)
        self.kernel_size = center.shape[0]

        self.register_buffer('center_mask', center.reshape(-1, 1))
        self.register_buffer('surround_mask', surround.reshape(-1, 1))

        # Échantillons valides (dans la grille) de chaque champ récepteur
        ones = torch.ones((1, 1, self.height, self.width), dtype=dtype, device=device)
        self.register_buffer('valid', self._patches(ones))

    def _patches(self, grid: torch.Tensor) -> torch.Tensor:
        """(1, 1, H, W) -> (k*k, H*W) avec remplissage nul."""
        patches = F.unfold(grid, kernel_size=self.kernel_size, padding=self.kernel_size // 2)
        return patches[0]

    def cell(self, position: Tuple[int, int], cell_type: GanglionType) -> GanglionCell:
        return GanglionCell(position, cell_type,
                            self.config.center_radius, self.config.surround_radius)

    def _prepare(self, grid: GridLike) -> torch.Tensor:
        grid = as_grid(grid, self.dtype, self.device)
        if grid.shape != (self.height, self.width):
            raise GridShapeError(f"Grille {tuple(grid.shape)} != {(self.height, self.width)}")
        return grid

    def contrast(self, grid: GridLike) -> torch.Tensor:
        """
        Contraste signé centre moins pourtour (non rectifié, sans gain).

        Les échantillons sont décalés de la valeur de la cellule elle-même
        avant moyennage : une grille uniforme donne exactement 0.
        """
        grid = self._prepare(grid)
        reference = grid.reshape(1, -1)

        patches = self._patches(grid.reshape(1, 1, self.height, self.width))
        shifted = (patches - reference) * self.valid

        center_count = (self.valid * self.center_mask).sum(dim=0)
        surround_count = (self.valid * self.surround_mask).sum(dim=0)
        center_sum = (shifted * self.center_mask).sum(dim=0)
        surround_sum = (shifted * self.surround_mask).sum(dim=0)

        has_center = center_count > 0
        has_surround = surround_count > 0
        center_shifted = torch.where(has_center, center_sum / center_count.clamp(min=1), 0.0)
        surround_shifted = torch.where(has_surround, surround_sum / surround_count.clamp(min=1), 0.0)

        # Région vide : moyenne nulle (sans décalage)
        ref = reference[0]
        center_mean = torch.where(has_center, center_shifted + ref, 0.0)
        surround_mean = torch.where(has_surround, surround_shifted + ref, 0.0)

        contrast = torch.where(has_center & has_surround,
                               center_shifted - surround_shifted,
                               center_mean - surround_mean)
        return contrast.reshape(self.height, self.width)

    def respond(self, grid: GridLike, position: Tuple[int, int],
                cell_type: GanglionType) -> float:
        """
        Réponse rectifiée et amplifiée d'une seule cellule.

        Calcul de référence, échantillon par échantillon.
        """
        grid = self._prepare(grid)
        row, col = position
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise GridShapeError(f"Position {position} hors de la grille")

        cell = self.cell(position, cell_type)
        r = int(math.floor(cell.surround_radius))
        ref = float(grid[row, col])

        center, surround = [], []
        for dr in range(-r, r + 1):
            for dc in range(-r, r + 1):
                rr, cc = row + dr, col + dc
                if not (0 <= rr < self.height and 0 <= cc < self.width):
                    continue
                d = math.hypot(dr, dc)
                if d <= cell.center_radius:
                    center.append(float(grid[rr, cc]) - ref)
                elif d <= cell.surround_radius:
                    surround.append(float(grid[rr, cc]) - ref)

        if center and surround:
            diff = sum(center) / len(center) - sum(surround) / len(surround)
        else:
            center_mean = sum(center) / len(center) + ref if center else 0.0
            surround_mean = sum(surround) / len(surround) + ref if surround else 0.0
            diff = center_mean - surround_mean

        if cell_type is GanglionType.OFF_CENTER:
            diff = -diff
        return max(diff, 0.0) * self.config.gain

    def forward(self, grid: GridLike) -> Dict[str, torch.Tensor]:
        """
        Réponses de toute la couche.

        Args:
            grid: Activation des photorécepteurs (H, W)

        Returns:
            Dictionnaire avec 'on', 'off' (rectifiées, amplifiées), 'edge'
            (on + off) et 'contrast' (signé)
        """
        contrast = self.contrast(grid)
        on = torch.relu(contrast) * self.config.gain
        off = torch.relu(-contrast) * self.config.gain
        edge = on + off

        logger.debug("Centre-pourtour : %d cellules ON, %d cellules OFF actives",
                     int((on > 0).sum()), int((off > 0).sum()))

        return {'on': on, 'off': off, 'edge': edge, 'contrast': contrast}


def create_edge_map(grid: GridLike,
                    config: Optional[CenterSurroundConfig] = None,
                    dtype: torch.dtype = torch.float64,
                    device: str = 'cpu') -> torch.Tensor:
    """
    Carte de contours (magnitude rectifiée) d'une grille d'intensités.

    Args:
        grid: Grille (H, W)
        config: Géométrie des champs récepteurs

    Returns:
        Tenseur (H, W) des réponses ON + OFF
    """
    grid = as_grid(grid, dtype, device)
    if grid.dim() != 2:
        raise GridShapeError(f"Attendu (H, W), obtenu {tuple(grid.shape)}")
    layer = CenterSurroundLayer(tuple(grid.shape), config, dtype, device)
    return layer(grid)['edge']
