"""
Module photoreceptors.py - Modélisation des photorécepteurs rétiniens
Cônes (S, M, L) en mosaïque déterministe, phototransduction en régime quasi
stationnaire et adaptation lente à la lumière.
"""

import logging
import math
from typing import Dict, Optional, Tuple, Union

import numpy as np
import torch
import torch.nn as nn

from ..config import PhotoreceptorConfig, validate_grid_shape
from ..exceptions import GridShapeError


logger = logging.getLogger(__name__)

# Indices des types de cônes dans le buffer `cone_types`
CONE_S, CONE_M, CONE_L = 0, 1, 2
CONE_NAMES = ('S', 'M', 'L')

# (pic, largeur) en nm par type de cône
CONE_SPECTRA = {
    'S': (420.0, 30.0),
    'M': (530.0, 40.0),
    'L': (560.0, 40.0),
}

# Longueurs d'onde associées aux canaux R, G, B
RGB_WAVELENGTHS = (630.0, 530.0, 450.0)

WAVELENGTH_RANGE = (380.0, 780.0)

GridLike = Union[torch.Tensor, np.ndarray, list]


def spectral_sensitivity(cone_type: str, wavelength: Optional[float]) -> float:
    """
    Sensibilité spectrale gaussienne d'un type de cône.

    Args:
        cone_type: 'S', 'M' ou 'L'
        wavelength: Longueur d'onde en nm (None = panchromatique)

    Returns:
        Sensibilité dans [0, 1]
    """
    if wavelength is None:
        return 1.0
    peak, width = CONE_SPECTRA[cone_type]
    wavelength = min(max(float(wavelength), WAVELENGTH_RANGE[0]), WAVELENGTH_RANGE[1])
    return math.exp(-((wavelength - peak) ** 2) / (2 * width ** 2))


def cone_mosaic(mosaic_shape: Tuple[int, int]) -> torch.Tensor:
    """
    Mosaïque déterministe des cônes : (ligne + colonne) % 10 == 0 donne un
    cône S, 1 à 4 un cône M, sinon un cône L.
    """
    height, width = mosaic_shape
    rows = torch.arange(height).unsqueeze(1)
    cols = torch.arange(width).unsqueeze(0)
    phase = (rows + cols) % 10

    mosaic = torch.full((height, width), CONE_L, dtype=torch.long)
    mosaic[(phase >= 1) & (phase <= 4)] = CONE_M
    mosaic[phase == 0] = CONE_S
    return mosaic


def as_grid(image: GridLike, dtype: torch.dtype = torch.float64,
            device: str = 'cpu') -> torch.Tensor:
    """Convertit une grille (tenseur, tableau numpy ou listes) en tenseur."""
    if isinstance(image, torch.Tensor):
        return image.detach().to(device=device, dtype=dtype)
    return torch.as_tensor(np.asarray(image, dtype=np.float64), dtype=dtype, device=device)


class PhotoreceptorLayer(nn.Module):
    """
    Couche de cônes organisée spatialement.

    Chaque cellule possède un état interne (dépolarisé dans le noir) et un
    niveau d'adaptation. Une invocation fait un pas de chaque filtre
    passe-bas ; les buffers persistent entre appels si `stateful`.
    """

    def __init__(self,
                 mosaic_shape: Tuple[int, int],
                 config: Optional[PhotoreceptorConfig] = None,
                 dtype: torch.dtype = torch.float64,
                 device: str = 'cpu'):

        super().__init__()

        self.height, self.width = validate_grid_shape(mosaic_shape)
        self.config = config or PhotoreceptorConfig()
        self.dtype = dtype
        self.device = device

        mosaic = cone_mosaic((self.height, self.width)).to(device)
        peaks = torch.tensor([CONE_SPECTRA[n][0] for n in CONE_NAMES], dtype=dtype, device=device)
        widths = torch.tensor([CONE_SPECTRA[n][1] for n in CONE_NAMES], dtype=dtype, device=device)

        self.register_buffer('cone_types', mosaic)
        self.register_buffer('peak_wavelengths', peaks[mosaic])
        self.register_buffer('bandwidths', widths[mosaic])

        # État interne et adaptation
        self.register_buffer('internal_state',
                             torch.full((self.height, self.width), self.config.dark_state,
                                        dtype=dtype, device=device))
        self.register_buffer('adaptation_level',
                             torch.zeros((self.height, self.width), dtype=dtype, device=device))

    def reset_state(self):
        """Réinitialise l'état (noir, non adapté)."""
        self.internal_state.fill_(self.config.dark_state)
        self.adaptation_level.zero_()

    def is_light_adapted(self, threshold: float = 0.25) -> bool:
        """
        Vrai si l'adaptation moyenne dépasse le seuil. Sous lumière saturante
        l'adaptation tend vers 0.5 ; le seuil par défaut en est la moitié.
        """
        return bool(self.adaptation_level.mean().item() > threshold)

    def sensitivity(self, wavelength: Optional[Union[float, GridLike]] = None) -> torch.Tensor:
        """
        Sensibilité spectrale de chaque cellule.

        Args:
            wavelength: None, une longueur d'onde unique ou une carte (H, W)

        Returns:
            Tenseur (H, W)
        """
        if wavelength is None:
            return torch.ones((self.height, self.width), dtype=self.dtype, device=self.device)

        if isinstance(wavelength, (int, float)):
            wl = torch.full((self.height, self.width), float(wavelength),
                            dtype=self.dtype, device=self.device)
        else:
            wl = as_grid(wavelength, self.dtype, self.device)
            if wl.shape != (self.height, self.width):
                raise GridShapeError(
                    f"Carte de longueurs d'onde {tuple(wl.shape)} != {(self.height, self.width)}")

        wl = torch.clamp(wl, *WAVELENGTH_RANGE)
        return torch.exp(-((wl - self.peak_wavelengths) ** 2) / (2 * self.bandwidths ** 2))

    def stimulus(self, image: GridLike,
                 wavelength: Optional[Union[float, GridLike]] = None) -> torch.Tensor:
        """
        Stimulus spectralement pondéré vu par chaque cône (avant adaptation).

        Une image (3, H, W) est lue comme R, G, B : chaque cellule reçoit la
        moyenne des canaux pondérée par sa sensibilité aux longueurs d'onde
        des canaux, de sorte qu'une lumière blanche stimule tous les types
        à l'identique.
        """
        grid = as_grid(image, self.dtype, self.device)

        if grid.dim() == 3 and grid.shape[0] == 1:
            grid = grid[0]

        if grid.dim() == 2:
            self._check_shape(grid.shape)
            return torch.clamp(grid, 0.0, 1.0) * self.sensitivity(wavelength)

        if grid.dim() == 3 and grid.shape[0] == 3:
            self._check_shape(grid.shape[1:])
            if wavelength is not None:
                raise GridShapeError("Longueur d'onde explicite incompatible avec une image RGB")
            channels = torch.clamp(grid, 0.0, 1.0)
            weights = torch.stack([self.sensitivity(wl) for wl in RGB_WAVELENGTHS])
            return (weights * channels).sum(dim=0) / weights.sum(dim=0)

        raise GridShapeError(f"Attendu (H, W) ou (3, H, W), obtenu {tuple(grid.shape)}")

    def _check_shape(self, shape):
        if tuple(shape) != (self.height, self.width):
            raise GridShapeError(f"Grille {tuple(shape)} != {(self.height, self.width)}")

    def target_state(self, intensity: GridLike,
                     wavelength: Optional[Union[float, GridLike]] = None) -> torch.Tensor:
        """
        État interne visé pour une intensité donnée, avec l'adaptation
        courante. Plus la lumière est forte, plus la cible est basse
        (hyperpolarisation).
        """
        if isinstance(intensity, (int, float)):
            intensity = torch.full((self.height, self.width), float(intensity),
                                   dtype=self.dtype, device=self.device)
        effective = self.stimulus(intensity, wavelength) * (1.0 - self.adaptation_level)
        return self._target(effective)

    def _target(self, effective: torch.Tensor) -> torch.Tensor:
        cfg = self.config
        return cfg.dark_state - (cfg.dark_state - cfg.light_state) * effective

    def _response(self, internal: torch.Tensor) -> torch.Tensor:
        cfg = self.config
        return (internal - cfg.light_state) / (cfg.dark_state - cfg.light_state)

    def _activation(self, internal: torch.Tensor) -> torch.Tensor:
        cfg = self.config
        return (cfg.dark_state - internal) / (cfg.dark_state - cfg.light_state)

    def sample(self, row: int, col: int, intensity: float,
               wavelength: Optional[float] = None) -> float:
        """
        Met à jour une seule cellule et renvoie sa réponse brute.

        Args:
            row, col: Position de la cellule
            intensity: Intensité dans [0, 1] (tronquée sinon)
            wavelength: Longueur d'onde en nm (optionnel)

        Returns:
            Réponse dans [0, 1], décroissante avec la luminosité
        """
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise GridShapeError(f"Position ({row}, {col}) hors de la grille "
                                 f"{(self.height, self.width)}")

        cfg = self.config
        cone = CONE_NAMES[int(self.cone_types[row, col])]
        intensity = min(max(float(intensity), 0.0), 1.0)
        adaptation = float(self.adaptation_level[row, col])

        effective = intensity * spectral_sensitivity(cone, wavelength) * (1.0 - adaptation)
        target = cfg.dark_state - (cfg.dark_state - cfg.light_state) * effective

        internal = float(self.internal_state[row, col])
        internal += (target - internal) * cfg.transduction_rate
        adaptation += (effective - adaptation) * cfg.adaptation_rate

        self.internal_state[row, col] = internal
        self.adaptation_level[row, col] = adaptation
        return (internal - cfg.light_state) / (cfg.dark_state - cfg.light_state)

    def forward(self, image: GridLike,
                wavelength: Optional[Union[float, GridLike]] = None) -> Dict[str, torch.Tensor]:
        """
        Réponse de la couche entière.

        Args:
            image: Grille (H, W) ou (3, H, W) d'intensités dans [0, 1]
            wavelength: Longueur d'onde unique ou carte (H, W), optionnel

        Returns:
            Dictionnaire avec 'response' (brute), 'activation' (proportionnelle
            à la luminosité) et 'adaptation'
        """
        if not self.config.stateful:
            self.reset_state()

        cfg = self.config
        effective = self.stimulus(image, wavelength) * (1.0 - self.adaptation_level)
        target = self._target(effective)

        internal = self.internal_state + (target - self.internal_state) * cfg.transduction_rate
        adaptation = self.adaptation_level + (effective - self.adaptation_level) * cfg.adaptation_rate

        self.internal_state.copy_(internal)
        self.adaptation_level.copy_(adaptation)

        activation = self._activation(internal)
        logger.debug("Photorécepteurs : %d cellules actives, adaptation moyenne %.4f",
                     int((activation > 0).sum()), float(adaptation.mean()))

        return {
            'response': self._response(internal),
            'activation': activation,
            'adaptation': adaptation.clone(),
        }
