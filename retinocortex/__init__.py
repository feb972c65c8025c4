"""
retinocortex - Simulation feedforward des premières étapes de la vision
Photorécepteurs, antagonisme centre-pourtour, sélectivité à l'orientation,
contours et jonctions, gabarits de forme.
"""

import logging

from .config import (
    VisionConfig, PhotoreceptorConfig, CenterSurroundConfig, OrientationConfig,
    ContourConfig, ShapeConfig, SHAPE_TEMPLATES
)
from .exceptions import VisionError, ConfigurationError, GridShapeError, InvariantViolation
from .retina import PhotoreceptorLayer, CenterSurroundLayer, GanglionType
from .cortex import (
    OrientationLayer, ContourExtractor, ShapeClassifier, dominant_orientation,
    dominant_shape
)
from .integrated_system import VisualPathway, FeatureReport, aggregate

__version__ = '0.1.0'

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    'VisionConfig',
    'PhotoreceptorConfig',
    'CenterSurroundConfig',
    'OrientationConfig',
    'ContourConfig',
    'ShapeConfig',
    'SHAPE_TEMPLATES',
    'VisionError',
    'ConfigurationError',
    'GridShapeError',
    'InvariantViolation',
    'PhotoreceptorLayer',
    'CenterSurroundLayer',
    'GanglionType',
    'OrientationLayer',
    'ContourExtractor',
    'ShapeClassifier',
    'dominant_orientation',
    'dominant_shape',
    'VisualPathway',
    'FeatureReport',
    'aggregate'
]
