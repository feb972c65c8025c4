"""
Module contours.py - Extraction de contours et de jonctions (V2)
Suivi déterministe de chaînes 8-connexes d'orientation cohérente, jonctions
L/T/X/Y par regroupement des extrémités, graphe de contours.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
import torch
from scipy.spatial import cKDTree

from ..config import ContourConfig, angular_difference
from ..exceptions import InvariantViolation


logger = logging.getLogger(__name__)

Point = Tuple[int, int]

# Voisinage 8-connexe en ordre ligne par ligne
NEIGHBOURS = ((-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1))

LENGTH_BUCKETS = (('short', 5.0), ('medium', 15.0), ('long', 30.0), ('very_long', math.inf))


class JunctionType(Enum):
    L = 'L'
    T = 'T'
    X = 'X'
    Y = 'Y'


@dataclass(frozen=True)
class ContourSegment:
    """Chaîne ordonnée de positions 8-connexes d'orientation cohérente."""

    points: Tuple[Point, ...]
    orientation: float
    length: float
    mean_activation: float

    @property
    def start(self) -> Point:
        return self.points[0]

    @property
    def end(self) -> Point:
        return self.points[-1]

    @property
    def endpoints(self) -> Tuple[Point, Point]:
        return (self.points[0], self.points[-1])

    @property
    def chord(self) -> float:
        return _distance(self.points[0], self.points[-1])

    def __len__(self):
        return len(self.points)


@dataclass(frozen=True)
class Junction:
    """Point où plusieurs segments se terminent ou se croisent."""

    position: Tuple[float, float]
    junction_type: JunctionType
    segments: Tuple[int, ...]
    arm_angles: Tuple[float, ...]

    @property
    def n_arms(self) -> int:
        return len(self.arm_angles)


@dataclass(frozen=True)
class ContourMetrics:
    """Métriques observables de l'extraction, fragmentation comprise."""

    segment_count: int = 0
    fragment_count: int = 0
    fragmentation_ratio: float = 0.0
    total_length: float = 0.0
    mean_length: float = 0.0
    max_length: float = 0.0
    min_length: float = 0.0
    median_length: float = 0.0
    closure: float = 0.0
    length_distribution: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({name: 0 for name, _ in LENGTH_BUCKETS}))
    junction_counts: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({t.value: 0 for t in JunctionType}))

    def as_dict(self) -> Dict[str, object]:
        return {
            'segment_count': self.segment_count,
            'fragment_count': self.fragment_count,
            'fragmentation_ratio': self.fragmentation_ratio,
            'total_length': self.total_length,
            'mean_length': self.mean_length,
            'max_length': self.max_length,
            'min_length': self.min_length,
            'median_length': self.median_length,
            'closure': self.closure,
            'length_distribution': dict(self.length_distribution),
            'junction_counts': dict(self.junction_counts),
        }


@dataclass
class ContourSet:
    segments: Tuple[ContourSegment, ...]
    junctions: Tuple[Junction, ...]
    graph: nx.Graph
    metrics: ContourMetrics
    active_count: int = 0


def _distance(a, b) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def path_length(points: Sequence[Point]) -> float:
    """Longueur d'arc : 1 par pas axial, sqrt(2) par pas diagonal."""
    return sum(_distance(points[k], points[k + 1]) for k in range(len(points) - 1))


def mean_orientation(orientations: Sequence[float], weights: Optional[Sequence[float]] = None) -> float:
    """Moyenne circulaire sur 180° (angle doublé), en degrés dans [0, 180)."""
    angles = np.radians(2.0 * np.asarray(orientations, dtype=np.float64))
    w = np.ones_like(angles) if weights is None else np.asarray(weights, dtype=np.float64)
    x = float((w * np.cos(angles)).sum())
    y = float((w * np.sin(angles)).sum())
    return math.degrees(0.5 * math.atan2(y, x)) % 180.0


def check_segment(points: Sequence[Point]):
    """Lève InvariantViolation si la chaîne n'est pas 8-connexe."""
    for a, b in zip(points, points[1:]):
        if max(abs(a[0] - b[0]), abs(a[1] - b[1])) != 1:
            raise InvariantViolation(f"Segment non 8-connexe entre {a} et {b}")


def arm_angle(center: Tuple[float, float], point: Point) -> float:
    """Direction (degrés, [0, 360)) du centre vers un point, convention du plan image."""
    return math.degrees(math.atan2(-(point[0] - center[0]), point[1] - center[1])) % 360.0


def angle_between(a: float, b: float) -> float:
    """Écart entre deux directions, dans [0, 180]."""
    return angular_difference(a, b, period=360.0)


def classify_arms(arm_angles: Sequence[float], collinear_tolerance: float = 25.0) -> Optional[JunctionType]:
    """
    Type de jonction selon le nombre de branches et leurs angles.

    2 branches colinéaires : continuation, pas de jonction ; sinon coin (L).
    3 branches : T si une paire est colinéaire, sinon Y. 4 ou plus : X.
    """
    n = len(arm_angles)
    if n < 2:
        return None

    def collinear(a, b):
        return angle_between(a, b) >= 180.0 - collinear_tolerance

    if n == 2:
        return None if collinear(*arm_angles) else JunctionType.L
    if n == 3:
        pairs = ((0, 1), (0, 2), (1, 2))
        if any(collinear(arm_angles[i], arm_angles[j]) for i, j in pairs):
            return JunctionType.T
        return JunctionType.Y
    return JunctionType.X


def chain_closure(segments: Sequence[ContourSegment], max_gap: float = math.inf) -> float:
    """
    Fermeture d'un groupe de segments.

    Chaînage glouton depuis le plus long segment : on rattache à chaque pas
    le segment dont l'extrémité la plus proche est la plus près de la queue
    courante, puis de la tête. Le chaînage s'arrête devant un écart
    supérieur à `max_gap`. Fermeture = 1 - |tête - queue| / longueur
    chaînée, dans [0, 1].
    """
    if not segments:
        return 0.0

    order = sorted(range(len(segments)), key=lambda i: (-segments[i].length, i))
    first = segments[order[0]]
    ends = [first.start, first.end]
    chained = first.length
    remaining = order[1:]

    # ends[1] : queue, ends[0] : tête
    for side in (1, 0):
        while remaining:
            tip = ends[side]
            best = min(remaining, key=lambda i: (min(_distance(tip, segments[i].start),
                                                     _distance(tip, segments[i].end)), i))
            seg = segments[best]
            gap = min(_distance(tip, seg.start), _distance(tip, seg.end))
            if gap > max_gap:
                break
            ends[side] = seg.end if _distance(tip, seg.start) <= _distance(tip, seg.end) else seg.start
            chained += seg.length
            remaining.remove(best)

    if chained <= 0:
        return 0.0
    return float(min(max(1.0 - _distance(ends[0], ends[1]) / chained, 0.0), 1.0))


def _to_numpy(value) -> np.ndarray:
    if isinstance(value, torch.Tensor):
        return value.detach().cpu().numpy().astype(np.float64)
    return np.asarray(value, dtype=np.float64)


class ContourExtractor:
    """
    Regroupe les réponses d'orientation en segments de contour et classe
    leurs intersections.

    La fragmentation est une approximation connue : les traces trop courtes
    sont écartées et comptées, jamais fusionnées silencieusement.
    """

    def __init__(self, config: Optional[ContourConfig] = None):
        self.config = config or ContourConfig()

    def active_cells(self, magnitude: np.ndarray) -> np.ndarray:
        return magnitude > self.config.activation_threshold

    def thin(self, magnitude: np.ndarray, orientation_map: np.ndarray,
             active: np.ndarray) -> np.ndarray:
        """
        Suppression des non-maxima perpendiculairement à l'orientation de
        chaque cellule : on garde les cellules >= à leurs deux voisines.
        """
        phi = np.radians(orientation_map)
        drow = (-np.rint(np.cos(phi))).astype(int)
        dcol = np.rint(-np.sin(phi)).astype(int)

        height, width = magnitude.shape
        padded = np.pad(magnitude, 1)
        rows, cols = np.indices((height, width))

        before = padded[rows + 1 + drow, cols + 1 + dcol]
        after = padded[rows + 1 - drow, cols + 1 - dcol]
        return active & (magnitude >= before) & (magnitude >= after)

    def trace(self, active: np.ndarray, magnitude: np.ndarray,
              orientation_map: np.ndarray) -> Tuple[List[ContourSegment], int]:
        """
        Suivi des segments en ordre ligne par ligne.

        Un segment croît depuis son dernier membre (la pointe) vers la
        voisine 8-connexe active non visitée compatible en orientation ;
        départage : activation la plus forte, puis voisines 4-connexes, puis
        plus petite (ligne, colonne). Une fois la pointe bloquée, le segment
        croît de même depuis sa tête.

        Returns:
            (segments retenus, nombre de fragments écartés)
        """
        cfg = self.config
        height, width = active.shape
        visited = np.zeros_like(active, dtype=bool)
        segments: List[ContourSegment] = []
        fragments = 0

        for r0, c0 in np.argwhere(active):
            r0, c0 = int(r0), int(c0)
            if visited[r0, c0]:
                continue

            points = [(r0, c0)]
            orientations = [float(orientation_map[r0, c0])]
            weights = [float(magnitude[r0, c0])]
            visited[r0, c0] = True

            def best_neighbour(tip: Point) -> Optional[Point]:
                dominant = mean_orientation(orientations, weights)
                best, best_key = None, None
                for dr, dc in NEIGHBOURS:
                    r, c = tip[0] + dr, tip[1] + dc
                    if not (0 <= r < height and 0 <= c < width):
                        continue
                    if not active[r, c] or visited[r, c]:
                        continue
                    theta = float(orientation_map[r, c])
                    if angular_difference(theta, dominant) > cfg.orientation_tolerance:
                        continue
                    # Aucun membre ne doit s'écarter de la nouvelle orientation dominante
                    updated = mean_orientation(orientations + [theta], weights + [float(magnitude[r, c])])
                    if any(angular_difference(o, updated) > cfg.orientation_tolerance
                           for o in orientations + [theta]):
                        continue
                    key = (-float(magnitude[r, c]), 0 if dr == 0 or dc == 0 else 1, r, c)
                    if best_key is None or key < best_key:
                        best, best_key = (r, c), key
                return best

            for grow_head in (False, True):
                while True:
                    tip = points[0] if grow_head else points[-1]
                    nxt = best_neighbour(tip)
                    if nxt is None:
                        break
                    visited[nxt] = True
                    if grow_head:
                        points.insert(0, nxt)
                        orientations.insert(0, float(orientation_map[nxt]))
                        weights.insert(0, float(magnitude[nxt]))
                    else:
                        points.append(nxt)
                        orientations.append(float(orientation_map[nxt]))
                        weights.append(float(magnitude[nxt]))

            if len(points) < cfg.min_segment_length:
                fragments += 1
                continue

            check_segment(points)
            segments.append(ContourSegment(
                points=tuple(points),
                orientation=mean_orientation(orientations, weights),
                length=path_length(points),
                mean_activation=float(np.mean(weights)),
            ))

        return segments, fragments

    def find_junctions(self, segments: Sequence[ContourSegment]) -> List[Junction]:
        """
        Jonctions : extrémités regroupées à moins de `junction_tolerance`
        (paires du cKDTree puis composantes connexes). Un segment dont
        l'intérieur passe près du centre d'un groupe y ajoute deux branches.
        """
        cfg = self.config
        if not segments:
            return []

        endpoints = []
        for i, seg in enumerate(segments):
            endpoints.append((seg.start, i, 0))
            if len(seg) > 1:
                endpoints.append((seg.end, i, 1))

        coords = np.array([p for p, _, _ in endpoints], dtype=np.float64)
        tree = cKDTree(coords)

        clusters = nx.Graph()
        clusters.add_nodes_from(range(len(endpoints)))
        clusters.add_edges_from(tree.query_pairs(r=cfg.junction_tolerance))

        junctions = []
        for component in sorted(nx.connected_components(clusters), key=min):
            members = sorted(component)
            center = tuple(coords[members].mean(axis=0))

            arms, incident = [], []
            for k in members:
                _, i, end = endpoints[k]
                pts = segments[i].points
                reach = min(cfg.arm_length, len(pts) - 1)
                target = pts[reach] if end == 0 else pts[len(pts) - 1 - reach]
                arms.append(arm_angle(center, target))
                incident.append(i)

            # Segments traversant le centre
            for i, seg in enumerate(segments):
                if i in incident:
                    continue
                pts = np.array(seg.points, dtype=np.float64)
                d = np.hypot(pts[:, 0] - center[0], pts[:, 1] - center[1])
                j = int(np.argmin(d))
                if d[j] > cfg.junction_tolerance:
                    continue
                # Branches mesurées depuis le point de passage, pas depuis le centre
                n = len(seg.points)
                origin = seg.points[j]
                if j > 0:
                    arms.append(arm_angle(origin, seg.points[max(j - cfg.arm_length, 0)]))
                if j < n - 1:
                    arms.append(arm_angle(origin, seg.points[min(j + cfg.arm_length, n - 1)]))
                incident.append(i)

            junction_type = classify_arms(arms, cfg.collinear_tolerance)
            if junction_type is None:
                continue
            junctions.append(Junction(
                position=(float(center[0]), float(center[1])),
                junction_type=junction_type,
                segments=tuple(sorted(set(incident))),
                arm_angles=tuple(arms),
            ))

        return junctions

    def build_graph(self, segments: Sequence[ContourSegment],
                    junctions: Sequence[Junction]) -> nx.Graph:
        """
        Graphe de contours : nœuds ('segment', i) et ('junction', j), arêtes
        d'incidence et de proximité (une extrémité à moins de
        grouping_distance d'un point d'un autre segment).
        """
        G = nx.Graph()
        for i, seg in enumerate(segments):
            G.add_node(('segment', i), length=seg.length, orientation=seg.orientation)
        for j, junction in enumerate(junctions):
            G.add_node(('junction', j), junction_type=junction.junction_type.value,
                       position=junction.position)
            for i in junction.segments:
                G.add_edge(('junction', j), ('segment', i))

        if len(segments) > 1:
            owners = [i for i, seg in enumerate(segments) for _ in seg.points]
            tree = cKDTree(np.array([p for seg in segments for p in seg.points], dtype=np.float64))
            for i, seg in enumerate(segments):
                for neighbours in tree.query_ball_point(np.array(seg.endpoints, dtype=np.float64),
                                                        r=self.config.grouping_distance):
                    for k in neighbours:
                        if owners[k] != i:
                            G.add_edge(('segment', i), ('segment', owners[k]))

        return G

    def compute_metrics(self, segments: Sequence[ContourSegment], fragments: int,
                        junctions: Sequence[Junction]) -> ContourMetrics:
        lengths = np.array([s.length for s in segments], dtype=np.float64)

        buckets = {name: 0 for name, _ in LENGTH_BUCKETS}
        for length in lengths:
            for name, upper in LENGTH_BUCKETS:
                if length <= upper:
                    buckets[name] += 1
                    break

        counts = {t.value: 0 for t in JunctionType}
        for junction in junctions:
            counts[junction.junction_type.value] += 1

        n = len(segments)
        return ContourMetrics(
            segment_count=n,
            fragment_count=fragments,
            fragmentation_ratio=fragments / (n + fragments) if n + fragments > 0 else 0.0,
            total_length=float(lengths.sum()) if n else 0.0,
            mean_length=float(lengths.mean()) if n else 0.0,
            max_length=float(lengths.max()) if n else 0.0,
            min_length=float(lengths.min()) if n else 0.0,
            median_length=float(np.median(lengths)) if n else 0.0,
            closure=chain_closure(segments, self.config.grouping_distance),
            length_distribution=MappingProxyType(buckets),
            junction_counts=MappingProxyType(counts),
        )

    def closure_in_range(self, closure: float) -> bool:
        """Vrai si la fermeture tombe dans `closure_range` (contour fermé attendu)."""
        low, high = self.config.closure_range
        return low <= closure <= high

    def extract_contours(self, orientation_output: Mapping[str, object]) -> ContourSet:
        """
        Extrait segments et jonctions des cartes d'orientation.

        Args:
            orientation_output: Sortie de OrientationLayer ('magnitude' et
                'orientation_map')

        Returns:
            ContourSet (segments, jonctions, graphe, métriques)
        """
        magnitude = _to_numpy(orientation_output['magnitude'])
        orientation_map = _to_numpy(orientation_output['orientation_map'])

        active = self.active_cells(magnitude)
        if self.config.thin:
            active = self.thin(magnitude, orientation_map, active)

        segments, fragments = self.trace(active, magnitude, orientation_map)
        junctions = self.find_junctions(segments)
        graph = self.build_graph(segments, junctions)
        metrics = self.compute_metrics(segments, fragments, junctions)

        logger.debug("Contours : %d segments, %d fragments, %d jonctions, fermeture %.3f",
                     metrics.segment_count, metrics.fragment_count, len(junctions), metrics.closure)

        return ContourSet(
            segments=tuple(segments),
            junctions=tuple(junctions),
            graph=graph,
            metrics=metrics,
            active_count=sum(len(s) for s in segments),
        )
