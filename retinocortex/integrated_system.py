"""
Module integrated_system.py - Voie visuelle complète
Photorécepteurs -> centre-pourtour -> orientation -> contours -> formes ->
rapport de caractéristiques. Chaque étage est entièrement calculé avant le
suivant.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

import torch
import torch.nn as nn

from .config import VisionConfig
from .cortex.contours import ContourExtractor, ContourMetrics
from .cortex.orientation import ORIENTATION_LABELS, OrientationLayer
from .cortex.shapes import ShapeClassifier
from .retina.ganglion_cells import CenterSurroundLayer
from .retina.photoreceptors import GridLike, PhotoreceptorLayer


logger = logging.getLogger(__name__)

LAYER_NAMES = ('photoreceptor', 'ganglion', 'orientation', 'contour', 'shape')


@dataclass(frozen=True)
class FeatureReport:
    """
    Description compacte d'une image, une instance par invocation.

    Les tables sont en lecture seule.
    """

    orientation_strengths: Mapping[str, float]
    dominant_orientation: str
    shape_confidences: Mapping[str, float]
    dominant_shape: str
    activity_counts: Mapping[str, int]
    contour_metrics: ContourMetrics
    edge_strength: float
    total_activation: float

    @property
    def horizontal(self) -> float:
        return self.orientation_strengths['horizontal']

    @property
    def vertical(self) -> float:
        return self.orientation_strengths['vertical']

    @property
    def diagonal_right(self) -> float:
        return self.orientation_strengths['diagonal_right']

    @property
    def diagonal_left(self) -> float:
        return self.orientation_strengths['diagonal_left']

    def as_dict(self) -> Dict[str, object]:
        return {
            'orientation_strengths': dict(self.orientation_strengths),
            'dominant_orientation': self.dominant_orientation,
            'shape_confidences': dict(self.shape_confidences),
            'dominant_shape': self.dominant_shape,
            'activity_counts': dict(self.activity_counts),
            'contour_metrics': self.contour_metrics.as_dict(),
            'edge_strength': self.edge_strength,
            'total_activation': self.total_activation,
        }


def aggregate(orientation_strengths: Mapping[str, float],
              dominant_orientation: str,
              shape_confidences: Mapping[str, float],
              dominant_shape: str,
              activity_counts: Mapping[str, int],
              contour_metrics: ContourMetrics,
              edge_strength: float = 0.0,
              total_activation: float = 0.0) -> FeatureReport:
    """Assemble le rapport ; aucun calcul supplémentaire."""
    return FeatureReport(
        orientation_strengths=MappingProxyType({k: float(orientation_strengths[k])
                                                for k in ORIENTATION_LABELS}),
        dominant_orientation=dominant_orientation,
        shape_confidences=MappingProxyType(dict(shape_confidences)),
        dominant_shape=dominant_shape,
        activity_counts=MappingProxyType({k: int(activity_counts[k]) for k in LAYER_NAMES}),
        contour_metrics=contour_metrics,
        edge_strength=float(edge_strength),
        total_activation=float(total_activation),
    )


class VisualPathway(nn.Module):
    """
    Pipeline feedforward complet, construit à partir d'une `VisionConfig`.

    Seuls les photorécepteurs portent un état entre invocations (adaptation) ;
    `reset_state()` le remet à zéro.
    """

    def __init__(self, config: Optional[VisionConfig] = None):
        super().__init__()

        self.config = config or VisionConfig()
        cfg = self.config
        shape = cfg.grid_shape

        # 1. Rétine
        self.photoreceptors = PhotoreceptorLayer(shape, cfg.photoreceptor, cfg.dtype, cfg.device)
        self.ganglion = CenterSurroundLayer(shape, cfg.center_surround, cfg.dtype, cfg.device)

        # 2. V1
        self.orientation = OrientationLayer(shape, cfg.orientation, cfg.dtype, cfg.device)

        # 3. V2 / V4
        self.contours = ContourExtractor(cfg.contour)
        self.shapes = ShapeClassifier(cfg.shape)

    def reset_state(self):
        self.photoreceptors.reset_state()

    @torch.no_grad()
    def forward(self, image: GridLike,
                wavelength: Optional[Union[float, GridLike]] = None) -> Dict[str, object]:
        """
        Passe complète.

        Args:
            image: Grille (H, W) ou (3, H, W) d'intensités dans [0, 1]
            wavelength: Longueur d'onde unique ou carte (H, W), optionnel

        Returns:
            Toutes les sorties intermédiaires et le rapport ('report')
        """
        # Rétine
        receptor_out = self.photoreceptors(image, wavelength)
        ganglion_out = self.ganglion(receptor_out['activation'])

        # Cortex
        orientation_out = self.orientation(ganglion_out['edge'])
        contour_set = self.contours.extract_contours(orientation_out)
        shape_candidates = self.shapes.candidates(contour_set)
        shape_scores = self.shapes.combine(shape_candidates)

        strengths = orientation_out['label_strengths']
        counts = {
            'photoreceptor': int((receptor_out['activation'] > 0).sum()),
            'ganglion': int((ganglion_out['edge'] > 0).sum()),
            'orientation': int((orientation_out['magnitude'] > 0).sum()),
            'contour': contour_set.active_count,
            'shape': len(shape_candidates),
        }

        report = aggregate(
            orientation_strengths=strengths,
            dominant_orientation=self.orientation.dominant(strengths),
            shape_confidences=shape_scores,
            dominant_shape=self.shapes.dominant_shape(shape_scores),
            activity_counts=counts,
            contour_metrics=contour_set.metrics,
            edge_strength=sum(strengths.values()),
            total_activation=float(orientation_out['simple'].sum()),
        )

        logger.debug("Rapport : orientation %s, forme %s, activité %s",
                     report.dominant_orientation, report.dominant_shape, counts)

        return {
            'photoreceptors': receptor_out,
            'ganglion': ganglion_out,
            'orientation': orientation_out,
            'contours': contour_set,
            'shape_candidates': shape_candidates,
            'report': report,
        }

    def process(self, image: GridLike,
                wavelength: Optional[Union[float, GridLike]] = None) -> FeatureReport:
        """Passe complète, ne renvoie que le rapport."""
        return self.forward(image, wavelength)['report']
