"""
Module stimuli.py - Stimuli synthétiques
Grilles d'intensités normalisées (H, W) pour les tests et les démonstrations :
points, lignes, bords, barres, rayures, damiers, croix et contours de formes.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np
import torch

from .config import validate_grid_shape
from .exceptions import ConfigurationError


Shape = Tuple[int, int]


def _blank(shape: Shape, background: float = 0.0) -> np.ndarray:
    height, width = validate_grid_shape(shape)
    return np.full((height, width), background, dtype=np.float64)


def _to_tensor(image: np.ndarray) -> torch.Tensor:
    return torch.from_numpy(image)


def _draw_line(image: np.ndarray, r1: float, c1: float, r2: float, c2: float,
               value: float = 1.0):
    """Trace un segment 8-connexe (échantillonnage dense puis arrondi)."""
    h, w = image.shape
    length = max(abs(r2 - r1), abs(c2 - c1), 1)

    for t in np.linspace(0, 1, int(2 * length) + 1):
        r = int(round(r1 + t * (r2 - r1)))
        c = int(round(c1 + t * (c2 - c1)))
        if 0 <= r < h and 0 <= c < w:
            image[r, c] = value


def _offsets(thickness: int):
    if thickness < 1:
        raise ConfigurationError(f"thickness doit être >= 1, obtenu {thickness}")
    return range(-(thickness // 2), (thickness - 1) // 2 + 1)


def uniform(shape: Shape, value: float = 0.5) -> torch.Tensor:
    return _to_tensor(_blank(shape, value))


def point(shape: Shape, position: Optional[Tuple[int, int]] = None,
          value: float = 1.0, background: float = 0.0) -> torch.Tensor:
    """Point lumineux unique (au centre par défaut)."""
    image = _blank(shape, background)
    h, w = image.shape
    row, col = position if position is not None else (h // 2, w // 2)
    image[row, col] = value
    return _to_tensor(image)


def horizontal_line(shape: Shape, row: Optional[int] = None, thickness: int = 1,
                    value: float = 1.0, background: float = 0.0) -> torch.Tensor:
    image = _blank(shape, background)
    h, _ = image.shape
    row = h // 2 if row is None else row
    for k in _offsets(thickness):
        if 0 <= row + k < h:
            image[row + k, :] = value
    return _to_tensor(image)


def vertical_line(shape: Shape, col: Optional[int] = None, thickness: int = 1,
                  value: float = 1.0, background: float = 0.0) -> torch.Tensor:
    image = _blank(shape, background)
    _, w = image.shape
    col = w // 2 if col is None else col
    for k in _offsets(thickness):
        if 0 <= col + k < w:
            image[:, col + k] = value
    return _to_tensor(image)


def diagonal_line(shape: Shape, direction: str = 'right', offset: int = 0,
                  thickness: int = 1, value: float = 1.0,
                  background: float = 0.0) -> torch.Tensor:
    """
    Ligne diagonale passant par le centre.

    Args:
        direction: 'right' (montante, 45°) ou 'left' (descendante, 135°)
        offset: Décalage de la diagonale en pixels
        thickness: Nombre de diagonales adjacentes
    """
    image = _blank(shape, background)
    h, w = image.shape
    rows, cols = np.indices((h, w))

    if direction == 'right':
        index = rows + cols - (h // 2 + w // 2 + offset)
    elif direction == 'left':
        index = cols - rows - (w // 2 - h // 2 + offset)
    else:
        raise ConfigurationError(f"Direction inconnue: {direction}")

    mask = np.zeros_like(image, dtype=bool)
    for k in _offsets(thickness):
        mask |= index == k
    image[mask] = value
    return _to_tensor(image)


def step_edge(shape: Shape, orientation: str = 'vertical', position: Optional[int] = None,
              low: float = 0.0, high: float = 1.0) -> torch.Tensor:
    """Bord en marche : `low` avant la position, `high` après."""
    image = _blank(shape, low)
    h, w = image.shape
    if orientation == 'vertical':
        image[:, (w // 2 if position is None else position):] = high
    elif orientation == 'horizontal':
        image[(h // 2 if position is None else position):, :] = high
    else:
        raise ConfigurationError(f"Orientation inconnue: {orientation}")
    return _to_tensor(image)


def bar(shape: Shape, orientation: str = 'vertical', width: int = 4,
        value: float = 1.0, background: float = 0.0) -> torch.Tensor:
    """Barre épaisse centrée."""
    if orientation == 'vertical':
        return vertical_line(shape, thickness=width, value=value, background=background)
    if orientation == 'horizontal':
        return horizontal_line(shape, thickness=width, value=value, background=background)
    if orientation in ('diagonal_right', 'diagonal_left'):
        return diagonal_line(shape, direction=orientation.split('_')[1], thickness=width,
                             value=value, background=background)
    raise ConfigurationError(f"Orientation inconnue: {orientation}")


def stripes(shape: Shape, orientation: str = 'vertical', period: int = 8) -> torch.Tensor:
    """Rayures alternées de demi-période `period // 2`."""
    image = _blank(shape)
    rows, cols = np.indices(image.shape)
    half = max(period // 2, 1)
    if orientation == 'vertical':
        index = cols
    elif orientation == 'horizontal':
        index = rows
    elif orientation == 'diagonal':
        index = rows + cols
    else:
        raise ConfigurationError(f"Orientation inconnue: {orientation}")
    image[(index // half) % 2 == 0] = 1.0
    return _to_tensor(image)


def checkerboard(shape: Shape, square_size: int = 8) -> torch.Tensor:
    image = _blank(shape)
    rows, cols = np.indices(image.shape)
    image[((rows // square_size) + (cols // square_size)) % 2 == 0] = 1.0
    return _to_tensor(image)


def cross(shape: Shape, center: Optional[Tuple[int, int]] = None,
          arm_length: Optional[int] = None, thickness: int = 1,
          value: float = 1.0) -> torch.Tensor:
    """Croix (+) : une barre horizontale et une barre verticale."""
    image = _blank(shape)
    h, w = image.shape
    row, col = center if center is not None else (h // 2, w // 2)
    arm = arm_length if arm_length is not None else min(h, w) // 3
    for k in _offsets(thickness):
        _draw_line(image, row + k, col - arm, row + k, col + arm, value)
        _draw_line(image, row - arm, col + k, row + arm, col + k, value)
    return _to_tensor(image)


def circle(shape: Shape, radius: float, center: Optional[Tuple[float, float]] = None,
           filled: bool = False, thickness: float = 1.0,
           value: float = 1.0) -> torch.Tensor:
    """Anneau (|d - rayon| <= épaisseur / 2) ou disque plein."""
    image = _blank(shape)
    h, w = image.shape
    cy, cx = center if center is not None else ((h - 1) / 2.0, (w - 1) / 2.0)
    rows, cols = np.indices((h, w))
    d = np.hypot(rows - cy, cols - cx)
    mask = d <= radius if filled else np.abs(d - radius) <= thickness / 2.0
    image[mask] = value
    return _to_tensor(image)


def rectangle(shape: Shape, top_left: Tuple[int, int], bottom_right: Tuple[int, int],
              value: float = 1.0) -> torch.Tensor:
    """Contour de rectangle aligné sur les axes."""
    image = _blank(shape)
    (r1, c1), (r2, c2) = top_left, bottom_right
    _draw_line(image, r1, c1, r1, c2, value)
    _draw_line(image, r2, c1, r2, c2, value)
    _draw_line(image, r1, c1, r2, c1, value)
    _draw_line(image, r1, c2, r2, c2, value)
    return _to_tensor(image)


def triangle(shape: Shape, vertices: Optional[Sequence[Tuple[float, float]]] = None,
             value: float = 1.0) -> torch.Tensor:
    """Contour de triangle (équilatéral centré par défaut)."""
    image = _blank(shape)
    h, w = image.shape
    if vertices is None:
        cy, cx = h / 2.0, w / 2.0
        r = min(h, w) / 3.0
        vertices = [(cy - r * math.sin(math.radians(a)), cx + r * math.cos(math.radians(a)))
                    for a in (90.0, 210.0, 330.0)]
    if len(vertices) != 3:
        raise ConfigurationError(f"Attendu 3 sommets, obtenu {len(vertices)}")
    for k in range(3):
        (r1, c1), (r2, c2) = vertices[k], vertices[(k + 1) % 3]
        _draw_line(image, r1, c1, r2, c2, value)
    return _to_tensor(image)
