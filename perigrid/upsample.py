"""
Upsampling (refinement) of B-spline coefficients from a coarse grid to
a finer grid that represents the same field.

A B-spline of order k can be written as a weighted sum of B-splines
that are r times narrower. The weights form the refinement stencil,
which are the coefficients of (1 + z + ... + z**(r-1))**(k+1) / r**k.
For the cubic B-spline with r=2 this gives the well known
(1 4 6 4 1) / 8: the knots in between two coarse knots get the average
of these two, and the knots on a coarse knot get 1/8 * (1 6 1) of the
knot and its neighbours. See also Lee et al. 1997, "Scattered Data
Interpolation with Multilevel B-splines".

The refinement is separable; it is applied to each dimension in turn,
as a matrix product along that axis of the coefficient array. Along
the periodic dimension, coarse indices wrap around, so the refined
coefficients describe the same periodic field without a seam.
"""

import logging

import numpy as np

from ._utils import ConfigurationError
from .geometry import (wrap_index, normalize_periodic_dim,
                       split_parameters, join_parameters)

logger = logging.getLogger(__name__)

# Keep a cache of calculated stencils
STENCILS = {}


def check_spline_order(order):
    """ check_spline_order(order)

    Check that the B-spline order is positive and odd. Grids of even
    order are not nested across levels (the refined knots fall in
    between the knots of a grid with half the spacing).

    """
    order = int(order)
    if order < 1 or order % 2 == 0:
        raise ValueError('The B-spline order must be a positive odd number, '
                         'got %i.' % order)
    return order


def refinement_stencil(order, factor):
    """ refinement_stencil(order, factor)

    Get the 1D refinement stencil to express a B-spline of the given
    order in terms of B-splines that are ``factor`` times narrower.
    Returns a read-only float64 array of length (factor-1)*(order+1)+1.

    """
    key = int(order), int(factor)
    if key not in STENCILS:
        order, factor = key
        if factor < 1:
            raise ValueError('Refinement factor must be at least 1.')
        box = np.ones((factor, ), np.float64)
        stencil = np.ones((1, ), np.float64)
        for i in range(order + 1):
            stencil = np.convolve(stencil, box)
        stencil /= float(factor) ** order
        stencil.flags.writeable = False
        STENCILS[key] = stencil
    return STENCILS[key]


def refinement_matrix(source_size, target_size, factor, shift, order,
                      periodic=False):
    """ refinement_matrix(source_size, target_size, factor, shift, order,
                          periodic=False)

    Get the (target_size x source_size) matrix that maps the coarse
    coefficients along one axis to the fine coefficients. The spacing
    of the target is ``factor`` times smaller, and ``shift`` is the
    position of the first source node in target node units.

    If periodic, source indices outside the grid wrap around. Otherwise
    the source coefficients outside the grid are zero.

    """
    stencil = refinement_stencil(order, factor)
    n = len(stencil)
    center = (factor - 1) * (order + 1) // 2
    periodic_dim = 0 if periodic else None

    matrix = np.zeros((target_size, source_size), np.float64)

    for m in range(target_size):
        # The source nodes i for which stencil element t - factor*i
        # lands on target node m
        t = m - shift + center
        i_first = -((n - 1 - t) // factor)
        i_last = t // factor
        for i in range(i_first, i_last + 1):
            ii = wrap_index((source_size, ), periodic_dim, 0, i)
            if 0 <= ii < source_size:
                matrix[m, ii] += stencil[t - factor * i]

    return matrix


def _apply_along_axis(matrix, coefs, axis):
    result = np.tensordot(matrix, coefs, axes=([1], [axis]))
    return np.moveaxis(result, 0, axis)


class GridUpsampler:
    """ GridUpsampler(order=3, periodic_dim=-1)

    Transfers the coefficients of a coarse grid to a finer grid, such
    that the finer grid represents the same field. This is grid
    refinement, not re-fitting: the result is exact.

    Requirements on the two grids (else ConfigurationError is raised):
      * the same number of dimensions and the same direction;
      * in each dimension, the source spacing is an integer multiple of
        the target spacing;
      * the target nodes lie on the subdivided source lattice;
      * along the periodic dimension, both grids span the same period.

    """

    def __init__(self, order=3, periodic_dim=-1):
        self._order = check_spline_order(order)
        self._periodic_dim = periodic_dim

    @property
    def order(self):
        """ The B-spline order.
        """
        return self._order

    @property
    def periodic_dim(self):
        """ The periodic dimension (can be negative, or None).
        """
        return self._periodic_dim

    def upsample(self, source, parameters, target):
        """ upsample(source, parameters, target)

        Given the parameter vector for the source GridGeometry, compute
        the parameter vector for the target GridGeometry. Returns a new
        float64 array.

        """

        if source.ndim != target.ndim:
            raise ConfigurationError('Cannot upsample a %iD grid to a %iD '
                                     'grid.' % (source.ndim, target.ndim))

        components = split_parameters(source, parameters)

        # Nothing to do
        if source.is_same(target):
            return join_parameters(components)

        if not np.allclose(source.direction, target.direction, atol=1e-6):
            raise ConfigurationError('Cannot upsample between grids with a '
                                     'different direction.')

        periodic_dim = normalize_periodic_dim(self._periodic_dim, source.ndim)
        source_frame = source.origin_in_frame()
        target_frame = target.origin_in_frame()

        # Get matrix for each dimension (None means unchanged)
        matrices = []
        for d in range(source.ndim):
            matrix = self._axis_matrix(d, source, target, source_frame[d],
                                       target_frame[d], d == periodic_dim)
            matrices.append(matrix)

        # Refine each component, one dimension at a time
        result = []
        for coefs in components:
            for d, matrix in enumerate(matrices):
                if matrix is not None:
                    coefs = _apply_along_axis(matrix, coefs, source.ndim-1-d)
            result.append(coefs)

        logger.debug('Upsampled grid of size %r to size %r', source.size,
                     target.size)
        return join_parameters(result)

    def _axis_matrix(self, d, source, target, source_origin, target_origin,
                     periodic):
        """ _axis_matrix(d, source, target, source_origin, target_origin,
                         periodic)

        Get the refinement matrix for dimension d, or None if the grids
        are the same along this dimension.

        """
        ns, nt = source.size[d], target.size[d]
        ss, ts = source.spacing[d], target.spacing[d]

        # The spacing must be an integer subdivision
        ratio = ss / ts
        factor = int(np.floor(ratio + 0.5))
        if factor < 1 or abs(ratio - factor) > 1e-6 * ratio:
            raise ConfigurationError(
                'Cannot upsample dimension %i: the target grid spacing %g is '
                'not an integer subdivision of the source grid spacing %g.' %
                (d, ts, ss))

        # The target nodes must be on the subdivided source lattice
        offset = (source_origin - target_origin) / ts
        shift = int(np.floor(offset + 0.5))
        if abs(offset - shift) > 1e-6:
            raise ConfigurationError(
                'Cannot upsample dimension %i: the target grid nodes are '
                'offset %g nodes from the subdivided source grid.' %
                (d, offset - shift))

        if periodic and nt != factor * ns:
            raise ConfigurationError(
                'Cannot upsample periodic dimension %i: the source grid '
                'spans %i nodes of %g, the target grid %i nodes of %g.' %
                (d, ns, ss, nt, ts))

        if factor == 1 and shift == 0 and ns == nt:
            return None

        return refinement_matrix(ns, nt, factor, shift, self._order, periodic)
