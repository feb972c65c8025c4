"""
Module shapes.py - Score des gabarits de forme (V4)
Chaque composante connexe du graphe de contours est un candidat ; chaque
gabarit possède sa propre fonction de score, indépendante des autres.

Les descripteurs portent sur le nuage des points de contour du candidat :
dispersions médianes autour d'un cercle, d'une boîte ou d'un triangle
ajustés, concentration sur deux axes (croix), linéarité (ACP). Les coins
et jonctions ne font que moduler ces scores.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import networkx as nx
import numpy as np

from ..config import SHAPE_TEMPLATES, ShapeConfig, angular_difference
from .contours import ContourSegment, ContourSet, Junction, JunctionType, chain_closure


logger = logging.getLogger(__name__)


class ShapeTemplate(Enum):
    CIRCLE = 'circle'
    RECTANGLE = 'rectangle'
    TRIANGLE = 'triangle'
    LINE = 'line'
    CROSS = 'cross'
    COMPLEX = 'complex'


@dataclass(frozen=True)
class ShapeFeatures:
    """Descripteurs géométriques d'un candidat."""

    segment_count: int
    junction_count: int
    total_length: float
    closure: float
    coverage: float
    corner_count: int
    corner_angles: Tuple[float, ...]
    right_angle_regularity: float
    equilateral_regularity: float
    straightness: float
    linearity: float
    roundness: float
    rectangularity: float
    triangularity: float
    cross_fit: float
    arm_balance: float
    x_fraction: float
    junction_histogram: Mapping[str, int]


@dataclass(frozen=True)
class ShapeCandidate:
    segments: Tuple[int, ...]
    junctions: Tuple[int, ...]
    features: ShapeFeatures
    scores: Mapping[str, float]
    # Longueur du candidat rapportée à celle du plus long candidat
    salience: float = 1.0


def _clip(value: float) -> float:
    return float(min(max(value, 0.0), 1.0))


def angle_regularity(angles: Sequence[float], target: float, tolerance: float) -> float:
    """Moyenne de 1 - |angle - cible| / tolérance (tronquée à [0, 1]) ; 0 sans angle."""
    if not angles:
        return 0.0
    return float(np.mean([_clip(1.0 - abs(a - target) / tolerance) for a in angles]))


def corner_match(count: int, expected: int) -> float:
    return 1.0 / (1.0 + abs(count - expected))


def relative_spread(values: np.ndarray) -> float:
    """Écart absolu médian rapporté à la médiane ; inf si la médiane est nulle."""
    if len(values) == 0:
        return math.inf
    center = float(np.median(values))
    if center <= 0:
        return math.inf
    return float(np.median(np.abs(values - center)) / center)


def spread_fit(spread: float, tolerance: float, falloff: float) -> float:
    """1 jusqu'à `tolerance`, puis décroissance linéaire jusqu'à 0 sur `falloff`."""
    if not math.isfinite(spread):
        return 0.0
    return _clip(1.0 - (spread - tolerance) / falloff)


def to_plane(points: np.ndarray) -> np.ndarray:
    """(ligne, colonne) -> (x, y) du plan image, y vers le haut."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return np.stack([points[:, 1], -points[:, 0]], axis=1)


def rotate(xy: np.ndarray, theta: float) -> Tuple[np.ndarray, np.ndarray]:
    """Coordonnées le long de la direction theta (degrés) et perpendiculairement."""
    t = math.radians(theta)
    along = xy[:, 0] * math.cos(t) + xy[:, 1] * math.sin(t)
    across = -xy[:, 0] * math.sin(t) + xy[:, 1] * math.cos(t)
    return along, across


def roundness(points: np.ndarray, tolerance: float = 0.02, falloff: float = 0.025) -> float:
    """Ajustement à un cercle : dispersion médiane des distances au centroïde."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(points) < 3:
        return 0.0
    centroid = points.mean(axis=0)
    radii = np.hypot(points[:, 0] - centroid[0], points[:, 1] - centroid[1])
    return spread_fit(relative_spread(radii), tolerance, falloff)


def linearity(xy: np.ndarray) -> float:
    """1 - (petite / grande valeur propre de la covariance), dans [0, 1]."""
    if len(xy) < 2:
        return 0.0
    eigenvalues = np.linalg.eigvalsh(np.cov(xy, rowvar=False, bias=True))
    if eigenvalues[-1] <= 0:
        return 0.0
    return _clip(1.0 - eigenvalues[0] / eigenvalues[-1])


def box_spread(xy: np.ndarray, theta: float) -> float:
    """
    Dispersion de la distance de Tchebychev normalisée à une boîte orientée
    selon theta. La boîte va des 5e aux 95e centiles de chaque axe : sur un
    rectangle, les côtés sont à distance 1 exactement.
    """
    along, across = rotate(xy, theta)
    d = None
    for values in (along, across):
        lo, hi = np.percentile(values, [5.0, 95.0])
        half = max((hi - lo) / 2.0, 1.0)
        term = np.abs(values - (lo + hi) / 2.0) / half
        d = term if d is None else np.maximum(d, term)
    return relative_spread(d)


def triangle_spread(xy: np.ndarray, theta: float) -> float:
    """
    Écart médian aux côtés d'un triangle équilatéral dont un côté suit theta,
    rapporté à son rayon inscrit. Chaque côté est placé au 95e centile des
    projections sur sa normale sortante ; les deux sens du triangle sont
    essayés.
    """
    best = math.inf
    for offset in (90.0, 270.0):
        normals = np.radians([theta + offset + 120.0 * k for k in range(3)])
        proj = np.stack([xy[:, 0] * np.cos(n) + xy[:, 1] * np.sin(n) for n in normals])
        sides = np.percentile(proj, 95.0, axis=1)
        # Les normales sont de somme nulle : la somme des côtés ne dépend pas de l'origine
        inradius = float(sides.sum()) / 3.0
        if inradius <= 0:
            continue
        residual = np.min(np.abs(sides[:, None] - proj), axis=0)
        best = min(best, float(np.median(residual)) / inradius)
    return best


def cross_spread(xy: np.ndarray, theta: float) -> Tuple[float, float]:
    """
    Concentration sur deux axes perpendiculaires passant par le point médian.

    Returns:
        (écart médian aux axes / extension médiane, équilibre entre les deux bras)
    """
    along, across = rotate(xy, theta)
    pa = np.abs(along - np.median(along))
    pb = np.abs(across - np.median(across))
    far = float(np.median(np.maximum(pa, pb)))
    spread = float(np.median(np.minimum(pa, pb))) / far if far > 0 else math.inf

    n_along = int((pa > pb).sum())
    n_across = int((pb > pa).sum())
    balance = min(n_along, n_across) / max(n_along, n_across) if max(n_along, n_across) else 0.0
    return spread, balance


def angular_coverage(xy: np.ndarray, bins: int = 12) -> float:
    """Fraction des secteurs angulaires autour du centroïde contenant un point."""
    if len(xy) < 3:
        return 0.0
    centered = xy - xy.mean(axis=0)
    radii = np.hypot(centered[:, 0], centered[:, 1])
    # Les points trop proches du centre n'ont pas de direction fiable
    far = radii >= 0.25 * radii.max() if radii.max() > 0 else np.zeros(len(xy), dtype=bool)
    angles = np.degrees(np.arctan2(centered[far, 1], centered[far, 0])) % 360.0
    occupied = np.unique(np.floor(angles / (360.0 / bins)).astype(int) % bins)
    return len(occupied) / bins


def frame_angles(segments: Iterable[ContourSegment]) -> List[float]:
    """Orientations candidates du repère : 0 et l'orientation de chaque segment, dans les deux sens."""
    angles = {0.0, 90.0}
    for seg in segments:
        angles.add(round(seg.orientation % 180.0, 1))
        angles.add(round(-seg.orientation % 180.0, 1))
    return sorted(angles)


def corner_angles(junctions: Sequence[Junction], segments: Sequence[ContourSegment],
                  min_length: float) -> Tuple[float, ...]:
    """
    Angle de chaque coin entre les orientations de ses deux plus longs
    segments incidents. Un coin est une jonction L, ou Y quand un court
    artefact part du sommet. Les segments plus courts que `min_length` sont
    ignorés ; un coin sans deux segments retenus n'est pas compté.
    """
    angles = []
    for junction in junctions:
        if junction.junction_type not in (JunctionType.L, JunctionType.Y):
            continue
        incident = sorted((segments[i] for i in junction.segments), key=lambda s: -s.length)
        incident = [s for s in incident if s.length >= min_length][:2]
        if len(incident) < 2:
            continue
        angles.append(angular_difference(incident[0].orientation, incident[1].orientation))
    return tuple(angles)


# Fonctions de score par gabarit (le gabarit 'complex' dépend des autres)

def _closedness(f: ShapeFeatures) -> float:
    return max(f.closure, f.coverage)


def _corner_term(regularity: float, count: int, expected: int, cfg: ShapeConfig) -> float:
    return (1.0 - cfg.corner_weight) + cfg.corner_weight * regularity * corner_match(count, expected)


def _score_circle(f: ShapeFeatures, cfg: ShapeConfig) -> float:
    return f.roundness * _closedness(f)


def _score_rectangle(f: ShapeFeatures, cfg: ShapeConfig) -> float:
    corners = _corner_term(f.right_angle_regularity, f.corner_count, 4, cfg)
    return f.rectangularity * _closedness(f) * corners


def _score_triangle(f: ShapeFeatures, cfg: ShapeConfig) -> float:
    corners = _corner_term(f.equilateral_regularity, f.corner_count, 3, cfg)
    return f.triangularity * _closedness(f) * corners


def _score_line(f: ShapeFeatures, cfg: ShapeConfig) -> float:
    straight = _clip((f.linearity - cfg.line_linearity) / (1.0 - cfg.line_linearity))
    extent = min(1.0, f.total_length / cfg.min_line_length)
    return straight * f.straightness * extent


def _score_cross(f: ShapeFeatures, cfg: ShapeConfig) -> float:
    # Les jonctions X confirment la croix, sans pouvoir la remplacer
    return f.cross_fit * f.arm_balance * (1.0 + 0.5 * f.x_fraction)


SCORING: Dict[ShapeTemplate, Callable[[ShapeFeatures, ShapeConfig], float]] = {
    ShapeTemplate.CIRCLE: _score_circle,
    ShapeTemplate.RECTANGLE: _score_rectangle,
    ShapeTemplate.TRIANGLE: _score_triangle,
    ShapeTemplate.LINE: _score_line,
    ShapeTemplate.CROSS: _score_cross,
}


def score_features(features: ShapeFeatures, config: Optional[ShapeConfig] = None) -> Dict[str, float]:
    """Score de chaque gabarit pour un candidat, dans [0, 1]."""
    cfg = config or ShapeConfig()
    scores = {t.value: _clip(fn(features, cfg)) for t, fn in SCORING.items()}

    # 'complex' : beaucoup d'éléments qui ne correspondent à aucun autre gabarit
    elements = features.junction_count + features.segment_count
    scores[ShapeTemplate.COMPLEX.value] = _clip(
        (1.0 - max(scores.values())) ** 2 * min(1.0, elements / cfg.complex_scale))

    return {name: scores[name] for name in SHAPE_TEMPLATES}


def dominant_shape(scores: Mapping[str, float], priority: Optional[Sequence[str]] = None) -> str:
    """
    Gabarit de score maximal, égalités départagées par l'ordre de priorité.
    Des scores tous nuls donnent 'complex' (non classé).
    """
    priority = priority or ShapeConfig().priority
    best = max(scores.values(), default=0.0)
    if best <= 0.0:
        return ShapeTemplate.COMPLEX.value
    for name in priority:
        if scores.get(name, 0.0) == best:
            return name
    return ShapeTemplate.COMPLEX.value


class ShapeClassifier:
    """
    Compare les configurations de contours aux gabarits géométriques.

    Faible fidélité biologique : pas de regroupement par symétrie entre
    fragments disjoints. Les erreurs de classification sont exposées par
    les scores de chaque candidat, jamais corrigées.
    """

    def __init__(self, config: Optional[ShapeConfig] = None):
        self.config = config or ShapeConfig()

    def describe(self, contours: ContourSet, segment_ids: Sequence[int],
                 junction_ids: Sequence[int]) -> ShapeFeatures:
        cfg = self.config
        segments = [contours.segments[i] for i in segment_ids]
        junctions = [contours.junctions[j] for j in junction_ids]

        histogram = {t.value: 0 for t in JunctionType}
        for junction in junctions:
            histogram[junction.junction_type.value] += 1

        longest = max((s.length for s in segments), default=0.0)
        min_corner_length = max(cfg.min_line_length, cfg.corner_length_ratio * longest)
        angles = corner_angles(junctions, contours.segments, min_corner_length)

        total_length = sum(s.length for s in segments)
        straightness = sum(s.chord for s in segments) / total_length if total_length > 0 else 0.0
        points = np.array([p for s in segments for p in s.points], dtype=np.float64).reshape(-1, 2)
        xy = to_plane(points)

        rect_spread = tri_spread = best_cross = math.inf
        balance = 0.0
        if len(xy) >= 3:
            for theta in frame_angles(segments):
                rect_spread = min(rect_spread, box_spread(xy, theta))
                tri_spread = min(tri_spread, triangle_spread(xy, theta))
                spread, arms = cross_spread(xy, theta)
                if spread < best_cross:
                    best_cross, balance = spread, arms

        tol, falloff = cfg.fit_tolerance, cfg.fit_falloff
        return ShapeFeatures(
            segment_count=len(segments),
            junction_count=len(junctions),
            total_length=float(total_length),
            closure=chain_closure(segments, cfg.closure_gap),
            coverage=angular_coverage(xy, cfg.coverage_bins),
            corner_count=len(angles),
            corner_angles=angles,
            right_angle_regularity=angle_regularity(angles, 90.0, cfg.corner_angle_tolerance),
            equilateral_regularity=angle_regularity(angles, 60.0, cfg.corner_angle_tolerance),
            straightness=_clip(straightness),
            linearity=linearity(xy),
            roundness=roundness(points, tol, falloff),
            rectangularity=spread_fit(rect_spread, tol, falloff),
            triangularity=spread_fit(tri_spread, tol, falloff),
            cross_fit=spread_fit(best_cross, 0.0, cfg.cross_falloff),
            arm_balance=float(balance),
            x_fraction=histogram['X'] / len(junctions) if junctions else 0.0,
            junction_histogram=MappingProxyType(histogram),
        )

    def candidates(self, contours: ContourSet) -> List[ShapeCandidate]:
        """Composantes connexes du graphe de contours, chacune décrite et notée."""
        groups = []
        for component in nx.connected_components(contours.graph):
            segment_ids = tuple(sorted(i for kind, i in component if kind == 'segment'))
            junction_ids = tuple(sorted(j for kind, j in component if kind == 'junction'))
            if segment_ids:
                groups.append((segment_ids, junction_ids))

        described = []
        for segment_ids, junction_ids in sorted(groups):
            features = self.describe(contours, segment_ids, junction_ids)
            described.append((segment_ids, junction_ids, features))

        longest = max((f.total_length for _, _, f in described), default=0.0)
        result = []
        for segment_ids, junction_ids, features in described:
            scores = score_features(features, self.config)
            salience = features.total_length / longest if longest > 0 else 0.0
            result.append(ShapeCandidate(segment_ids, junction_ids, features,
                                         MappingProxyType(scores), salience))
        return result

    def classify(self, contours: ContourSet) -> Dict[str, float]:
        """
        Confiance par gabarit : maximum sur les candidats du score pondéré par
        la saillance, 0 sans candidat.

        Returns:
            Un score dans [0, 1] pour chacun des gabarits
        """
        return self.combine(self.candidates(contours))

    def combine(self, candidates: Sequence[ShapeCandidate]) -> Dict[str, float]:
        scores = {name: 0.0 for name in SHAPE_TEMPLATES}
        for candidate in candidates:
            for name, value in candidate.scores.items():
                scores[name] = max(scores[name], value * candidate.salience)

        logger.debug("Formes : %d candidats, scores %s", len(candidates), scores)
        return scores

    def dominant_shape(self, scores: Mapping[str, float]) -> str:
        return dominant_shape(scores, self.config.priority)
