"""
Module config.py - Configuration de la voie visuelle
Chaque paramètre réglable du pipeline est un champ explicite ; une exécution
est entièrement décrite par sa `VisionConfig`. La validation a lieu dans
`__post_init__` : une valeur invalide lève `ConfigurationError` et n'est
jamais tronquée.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Tuple

import torch

from .exceptions import ConfigurationError


# Gabarits de forme, dans leur ordre de déclaration (cf. `ShapeTemplate`)
SHAPE_TEMPLATES: Tuple[str, ...] = (
    'circle', 'rectangle', 'triangle', 'line', 'cross', 'complex'
)


def _require(condition: bool, message: str):
    if not condition:
        raise ConfigurationError(message)


@dataclass
class PhotoreceptorConfig:
    """Paramètres de phototransduction en régime quasi stationnaire (cônes)."""

    # État interne (type GMPc) dans le noir et en lumière saturante
    dark_state: float = 100.0
    light_state: float = 10.0

    # Pas des filtres passe-bas du premier ordre, par invocation
    transduction_rate: float = 0.3
    adaptation_rate: float = 0.01

    # Conserver l'adaptation entre appels (False = réinitialisation à chaque appel)
    stateful: bool = True

    def __post_init__(self):
        _require(self.dark_state > self.light_state,
                 f"dark_state ({self.dark_state}) doit dépasser light_state ({self.light_state})")
        _require(0.0 < self.transduction_rate <= 1.0,
                 f"transduction_rate doit être dans ]0, 1], obtenu {self.transduction_rate}")
        _require(0.0 <= self.adaptation_rate <= 1.0,
                 f"adaptation_rate doit être dans [0, 1], obtenu {self.adaptation_rate}")
        _require(self.adaptation_rate <= self.transduction_rate,
                 "l'adaptation doit être plus lente que la transduction")


@dataclass
class CenterSurroundConfig:
    """Géométrie des champs récepteurs centre-pourtour."""

    center_radius: float = 1.5
    surround_radius: float = 4.0
    gain: float = 100.0

    def __post_init__(self):
        _require(self.center_radius > 0,
                 f"center_radius doit être positif, obtenu {self.center_radius}")
        _require(self.surround_radius > self.center_radius,
                 f"surround_radius ({self.surround_radius}) doit dépasser "
                 f"center_radius ({self.center_radius})")
        _require(self.gain > 0, f"gain doit être positif, obtenu {self.gain}")


@dataclass
class OrientationConfig:
    """Paramètres des cellules simples et complexes de V1."""

    orientations: Tuple[float, ...] = (0.0, 45.0, 90.0, 135.0)
    rf_radius: int = 5
    perp_sigma: float = 1.0
    perp_cutoff: float = 2.0
    gain: float = 10.0

    # Pondération de moyenne nulle (type Gabor) : bande excitatrice allongée
    # moins la moyenne du champ récepteur
    inhibitory_surround: bool = True

    # Voisinage du max-pooling des cellules complexes
    complex_pool: int = 3

    # Deux détecteurs diagonaux pour un horizontal et un vertical
    diagonal_normalization: float = 1.0 / 2.25

    # Horizontal/vertical l'emporte tant que la meilleure diagonale ne le
    # dépasse pas de plus de cette fraction
    axis_preference_margin: float = 0.06

    def __post_init__(self):
        self.orientations = tuple(float(o) % 180.0 for o in self.orientations)
        _require(len(self.orientations) > 0, "au moins une orientation est nécessaire")
        _require(len(set(self.orientations)) == len(self.orientations),
                 f"orientations doivent être distinctes modulo 180, obtenu {self.orientations}")
        _require(int(self.rf_radius) == self.rf_radius and self.rf_radius >= 1,
                 f"rf_radius doit être un entier positif, obtenu {self.rf_radius}")
        _require(self.perp_sigma > 0, f"perp_sigma doit être positif, obtenu {self.perp_sigma}")
        _require(self.perp_cutoff > 0, f"perp_cutoff doit être positif, obtenu {self.perp_cutoff}")
        _require(self.gain > 0, f"gain doit être positif, obtenu {self.gain}")
        _require(self.complex_pool >= 1 and self.complex_pool % 2 == 1,
                 f"complex_pool doit être un entier impair positif, obtenu {self.complex_pool}")
        _require(self.diagonal_normalization > 0,
                 f"diagonal_normalization doit être positif, obtenu {self.diagonal_normalization}")
        _require(self.axis_preference_margin >= 0,
                 f"axis_preference_margin doit être >= 0, obtenu {self.axis_preference_margin}")


@dataclass
class ContourConfig:
    """Paramètres du suivi de contours et de la détection de jonctions."""

    activation_threshold: float = 2.0
    orientation_tolerance: float = 30.0
    min_segment_length: int = 3
    thin: bool = True

    junction_tolerance: float = 3.0
    arm_length: int = 4
    collinear_tolerance: float = 25.0

    # Distance entre extrémités en deçà de laquelle deux segments sont groupés
    grouping_distance: float = 5.0

    # Fermeture acceptable pour un contour fermé (cercle synthétique)
    closure_range: Tuple[float, float] = (0.5, 1.0)

    def __post_init__(self):
        self.closure_range = tuple(float(v) for v in self.closure_range)
        _require(self.activation_threshold >= 0,
                 f"activation_threshold doit être >= 0, obtenu {self.activation_threshold}")
        _require(0 < self.orientation_tolerance <= 90,
                 f"orientation_tolerance doit être dans ]0, 90], obtenu {self.orientation_tolerance}")
        _require(self.min_segment_length >= 1,
                 f"min_segment_length doit être >= 1, obtenu {self.min_segment_length}")
        _require(self.junction_tolerance > 0,
                 f"junction_tolerance doit être positif, obtenu {self.junction_tolerance}")
        _require(self.arm_length >= 1, f"arm_length doit être >= 1, obtenu {self.arm_length}")
        _require(0 <= self.collinear_tolerance < 90,
                 f"collinear_tolerance doit être dans [0, 90[, obtenu {self.collinear_tolerance}")
        _require(self.grouping_distance > 0,
                 f"grouping_distance doit être positif, obtenu {self.grouping_distance}")
        _require(len(self.closure_range) == 2
                 and 0.0 <= self.closure_range[0] <= self.closure_range[1] <= 1.0,
                 f"closure_range doit être (bas, haut) dans [0, 1], obtenu {self.closure_range}")


@dataclass
class ShapeConfig:
    """Paramètres du score des gabarits de forme."""

    # Ordre de départage de la forme dominante
    priority: Tuple[str, ...] = (
        'rectangle', 'triangle', 'circle', 'cross', 'line', 'complex'
    )
    corner_angle_tolerance: float = 20.0
    min_line_length: float = 8.0
    complex_scale: float = 12.0

    # Dispersion médiane relative tolérée autour d'un gabarit ajusté, puis
    # largeur de la décroissance du score
    fit_tolerance: float = 0.02
    fit_falloff: float = 0.025
    cross_falloff: float = 0.25

    # Linéarité (ACP) à partir de laquelle le score de ligne devient positif
    line_linearity: float = 0.8

    # Segments incidents plus courts que ce ratio du plus long ignorés aux coins
    corner_length_ratio: float = 0.5
    # Part du score de polygone modulée par les coins
    corner_weight: float = 0.25

    closure_gap: float = 5.0
    coverage_bins: int = 12

    def __post_init__(self):
        self.priority = tuple(self.priority)
        _require(sorted(self.priority) == sorted(SHAPE_TEMPLATES),
                 f"priority doit lister chaque gabarit de {SHAPE_TEMPLATES} une fois, "
                 f"obtenu {self.priority}")
        _require(0 < self.corner_angle_tolerance < 90,
                 f"corner_angle_tolerance doit être dans ]0, 90[, obtenu {self.corner_angle_tolerance}")
        _require(self.min_line_length > 0,
                 f"min_line_length doit être positif, obtenu {self.min_line_length}")
        _require(self.complex_scale > 0,
                 f"complex_scale doit être positif, obtenu {self.complex_scale}")
        _require(self.fit_tolerance >= 0,
                 f"fit_tolerance doit être >= 0, obtenu {self.fit_tolerance}")
        _require(self.fit_falloff > 0 and self.cross_falloff > 0,
                 f"fit_falloff et cross_falloff doivent être positifs, "
                 f"obtenu {self.fit_falloff}, {self.cross_falloff}")
        _require(0 <= self.line_linearity < 1,
                 f"line_linearity doit être dans [0, 1[, obtenu {self.line_linearity}")
        _require(0 <= self.corner_length_ratio <= 1,
                 f"corner_length_ratio doit être dans [0, 1], obtenu {self.corner_length_ratio}")
        _require(0 <= self.corner_weight <= 1,
                 f"corner_weight doit être dans [0, 1], obtenu {self.corner_weight}")
        _require(self.closure_gap > 0, f"closure_gap doit être positif, obtenu {self.closure_gap}")
        _require(int(self.coverage_bins) == self.coverage_bins and self.coverage_bins >= 4,
                 f"coverage_bins doit être un entier >= 4, obtenu {self.coverage_bins}")


@dataclass
class VisionConfig:
    """
    Description complète d'une exécution du pipeline.

    Les dimensions de grille sont fixées ici ; chaque couche est construite
    pour cette forme.
    """

    height: int = 64
    width: int = 64

    photoreceptor: PhotoreceptorConfig = field(default_factory=PhotoreceptorConfig)
    center_surround: CenterSurroundConfig = field(default_factory=CenterSurroundConfig)
    orientation: OrientationConfig = field(default_factory=OrientationConfig)
    contour: ContourConfig = field(default_factory=ContourConfig)
    shape: ShapeConfig = field(default_factory=ShapeConfig)

    dtype: torch.dtype = torch.float64
    device: str = 'cpu'

    def __post_init__(self):
        validate_grid_shape((self.height, self.width))
        _require(self.dtype.is_floating_point,
                 f"dtype doit être flottant, obtenu {self.dtype}")

    @property
    def grid_shape(self) -> Tuple[int, int]:
        return (self.height, self.width)


def validate_grid_shape(grid_shape: Tuple[int, int]) -> Tuple[int, int]:
    """Vérifie (hauteur, largeur) et la renvoie en entiers."""
    _require(len(grid_shape) == 2, f"forme de grille attendue (hauteur, largeur), obtenu {grid_shape}")
    height, width = grid_shape
    _require(int(height) == height and int(width) == width,
             f"dimensions de grille entières attendues, obtenu {grid_shape}")
    _require(height > 0 and width > 0,
             f"dimensions de grille positives attendues, obtenu {grid_shape}")
    return int(height), int(width)


def is_diagonal(degrees: float) -> bool:
    """Vrai pour les orientations plus proches de 45/135 que de 0/90."""
    d = degrees % 180.0
    return 22.5 <= d <= 67.5 or 112.5 <= d <= 157.5


def angular_difference(a: float, b: float, period: float = 180.0) -> float:
    """Plus petit écart absolu entre deux angles (degrés)."""
    diff = math.fmod(abs(a - b), period)
    return min(diff, period - diff)
