from .photoreceptors import (
    PhotoreceptorLayer, spectral_sensitivity, cone_mosaic, as_grid,
    CONE_S, CONE_M, CONE_L, CONE_SPECTRA, RGB_WAVELENGTHS
)
from .ganglion_cells import (
    CenterSurroundLayer, GanglionCell, GanglionType, create_edge_map,
    receptive_field_masks
)

__all__ = [
    'PhotoreceptorLayer',
    'spectral_sensitivity',
    'cone_mosaic',
    'as_grid',
    'CONE_S', 'CONE_M', 'CONE_L',
    'CONE_SPECTRA',
    'RGB_WAVELENGTHS',
    'CenterSurroundLayer',
    'GanglionCell',
    'GanglionType',
    'create_edge_map',
    'receptive_field_masks'
]
