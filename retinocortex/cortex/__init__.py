from .orientation import (
    OrientationLayer, Orientation, ORIENTATION_LABELS, dominant_orientation,
    strip_weights
)
from .contours import (
    ContourExtractor, ContourSegment, ContourSet, ContourMetrics, Junction,
    JunctionType, chain_closure, classify_arms
)
from .shapes import (
    ShapeClassifier, ShapeCandidate, ShapeFeatures, ShapeTemplate,
    dominant_shape, score_features
)

__all__ = [
    'OrientationLayer',
    'Orientation',
    'ORIENTATION_LABELS',
    'dominant_orientation',
    'strip_weights',
    'ContourExtractor',
    'ContourSegment',
    'ContourSet',
    'ContourMetrics',
    'Junction',
    'JunctionType',
    'chain_closure',
    'classify_arms',
    'ShapeClassifier',
    'ShapeCandidate',
    'ShapeFeatures',
    'ShapeTemplate',
    'dominant_shape',
    'score_features'
]
