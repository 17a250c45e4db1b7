"""
Selection of the passive coefficients at the edges of the grid.

Coefficients near the border of the grid can be excluded from the
optimization by giving them a very large optimizer scale. The border
band is found by visiting every node of the grid and skipping the ones
inside the inset region (the grid shrunk by the edge width on every
face that is not periodic).
"""

import logging

import numpy as np
import numba

from ._utils import ConfigurationError
from .geometry import normalize_periodic_dim

logger = logging.getLogger(__name__)

FROZEN_SCALE = 10000.0


class PassiveEdgeSelector:
    """ PassiveEdgeSelector(periodic_dim=-1, frozen_scale=10000.0)

    Computes optimizer scales that freeze the coefficients in a band of
    ``edge_width`` nodes along the border of the grid. The periodic
    dimension has no real edge, and is never shrunk.

    """

    def __init__(self, periodic_dim=-1, frozen_scale=FROZEN_SCALE):
        self._periodic_dim = periodic_dim
        self._frozen_scale = float(frozen_scale)

    @property
    def periodic_dim(self):
        """ The periodic dimension (can be negative, or None).
        """
        return self._periodic_dim

    @property
    def frozen_scale(self):
        """ The scale given to passive coefficients.
        """
        return self._frozen_scale

    def inset_region(self, geometry, edge_width):
        """ inset_region(geometry, edge_width)

        Get the (index, size) of the region with active nodes.
        Raises ConfigurationError if no such region exists.

        """
        edge_width = int(edge_width)
        if edge_width < 0:
            raise ConfigurationError('The PassiveEdgeWidth must not be '
                                     'negative, got %i.' % edge_width)

        periodic_dim = normalize_periodic_dim(self._periodic_dim, geometry.ndim)
        index, size = [], []
        for d in range(geometry.ndim):
            if d == periodic_dim:
                index.append(geometry.index[d])
                size.append(geometry.size[d])
                continue
            inset_size = geometry.size[d] - 2 * edge_width
            if inset_size <= 0:
                raise ConfigurationError(
                    'The PassiveEdgeWidth is too large: you specified %i '
                    'while the grid size in dimension %i is only %i.' %
                    (edge_width, d, geometry.size[d]))
            index.append(geometry.index[d] + edge_width)
            size.append(inset_size)

        return tuple(index), tuple(size)

    def compute_scales(self, geometry, edge_width):
        """ compute_scales(geometry, edge_width)

        Get the optimizer scales as a float64 array parallel to the
        parameter vector: one for active coefficients and frozen_scale
        for each of the components of nodes in the border band.

        """
        scales = np.ones((geometry.number_of_parameters, ), np.float64)
        if int(edge_width) == 0:
            return scales

        inset_index, inset_size = self.inset_region(geometry, edge_width)

        # Express the inset region relative to the first node
        size = np.array(geometry.size, np.int64)
        lo = np.array(inset_index, np.int64) - np.array(geometry.index, np.int64)
        hi = lo + np.array(inset_size, np.int64)

        nfrozen = _freeze_outside_region(scales, size, lo, hi,
                                         self._frozen_scale)
        logger.debug('Frozen %i of %i nodes (edge width %i)', nfrozen,
                     geometry.number_of_nodes, edge_width)
        return scales

    def passive_offsets(self, geometry, edge_width):
        """ passive_offsets(geometry, edge_width)

        Get the sorted offsets in the parameter vector of the passive
        coefficients.

        """
        scales = self.compute_scales(geometry, edge_width)
        offsets, = np.where(scales == self._frozen_scale)
        return offsets


@numba.jit(nopython=True, nogil=True)
def _freeze_outside_region(scales, size, lo, hi, frozen_scale):
    """ Visit all nodes, skip the ones with lo <= index < hi in every
    dimension, and set the scales of all components of the others.
    Returns the number of frozen nodes.
    """

    ndim = size.shape[0]
    nnodes = 1
    for d in range(ndim):
        nnodes *= size[d]

    count = 0

    # For each node (dimension 0 varies fastest) ...
    for offset in range(nnodes):

        # Test whether it is inside the inset region
        inside = True
        rest = offset
        for d in range(ndim):
            i = rest % size[d]
            rest = rest // size[d]
            if i < lo[d] or i >= hi[d]:
                inside = False
                break
        if inside:
            continue

        # Freeze each component
        for c in range(ndim):
            scales[offset + c * nnodes] = frozen_scale
        count += 1

    return count
