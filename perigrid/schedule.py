"""
Computation of the control point grids for all resolution levels.

Each level gets a grid whose spacing is the final grid spacing times
the downsampling factor of that level. The grids are placed such that
they cover the image with enough margin for the B-spline support, and
such that the nodes of a coarse grid are also nodes of every finer grid
(the knots are anchored at the image center). This makes upsampling
between levels exact.

Along the periodic dimension, the grid does not get a margin; instead
the spacing is adapted so that an integer number of nodes spans the
period exactly. The node count of each level divides the count of the
next finer level, so the periodic grids nest as well.
"""

import logging
import warnings

import numpy as np

from ._utils import Parameters, ConfigurationError, GeometryWarning
from .geometry import ImageDescription, GridGeometry, normalize_periodic_dim
from .upsample import check_spline_order

logger = logging.getLogger(__name__)

DEFAULT_FINAL_GRID_SPACING_IN_VOXELS = 16.0


## Reading the configuration


def default_schedule(levels, ndim, factor=2.0):
    """ default_schedule(levels, ndim, factor=2.0)

    Get the default grid spacing schedule as a (levels x ndim) array.
    The factor for level l is factor**(levels-1-l) in every dimension,
    so the last level has factor 1.

    """
    levels = int(levels)
    if levels < 1:
        raise ValueError('The number of resolution levels must be at least 1.')
    schedule = np.empty((levels, ndim), dtype=np.float64)
    for level in range(levels):
        schedule[level, :] = float(factor) ** (levels - 1 - level)
    return schedule


def _read_per_dim(params, key, ndim, default=None):
    values = params.entries(key)
    if not values:
        values = [default]
    if len(values) == 1:
        values = values * ndim
    elif len(values) != ndim:
        raise ConfigurationError('%s should have 1 or %i entries, got %i.' %
                                 (key, ndim, len(values)))
    values = [float(v) for v in values]
    for d, v in enumerate(values):
        if not v > 0:
            raise ConfigurationError('%s must be positive, got %r in '
                                     'dimension %i.' % (key, v, d))
    return values


def read_final_grid_spacing(params, image_spacing):
    """ read_final_grid_spacing(params, image_spacing)

    Get the final grid spacing in physical units from the configuration.
    If FinalGridSpacingInPhysicalUnits has any entry it is used directly.
    Otherwise FinalGridSpacingInVoxels (default 16) is multiplied with
    the image spacing. A single entry applies to all dimensions.

    """
    if not isinstance(params, Parameters):
        params = Parameters(params)
    ndim = len(image_spacing)

    if params.count('FinalGridSpacingInPhysicalUnits'):
        spacing = _read_per_dim(params, 'FinalGridSpacingInPhysicalUnits',
                                ndim)
        logger.debug('Final grid spacing given in physical units: %r',
                     spacing)
    else:
        voxels = _read_per_dim(params, 'FinalGridSpacingInVoxels', ndim,
                               DEFAULT_FINAL_GRID_SPACING_IN_VOXELS)
        spacing = [v * float(s) for v, s in zip(voxels, image_spacing)]
        logger.debug('Final grid spacing of %r voxels is %r in physical '
                     'units', voxels, spacing)

    return tuple(spacing)


def read_grid_spacing_schedule(params, levels, ndim):
    """ read_grid_spacing_schedule(params, levels, ndim)

    Get the grid spacing schedule as a (levels x ndim) array. The
    GridSpacingSchedule entries give the downsampling factors, either
    one per level (used for all dimensions), or one per level per
    dimension. Without entries, the default schedule is used.

    """
    if not isinstance(params, Parameters):
        params = Parameters(params)

    schedule = default_schedule(levels, ndim)
    entries = params.entries('GridSpacingSchedule')
    count = len(entries)

    if count == 0:
        pass  # keep the default schedule
    elif count == levels:
        for level in range(levels):
            schedule[level, :] = float(entries[level])
    elif count == levels * ndim:
        for level in range(levels):
            for d in range(ndim):
                schedule[level, d] = float(entries[level * ndim + d])
    else:
        raise ConfigurationError(
            'Invalid GridSpacingSchedule: got %i entries, but the number of '
            'entries should equal the number of resolutions (%i), or the '
            'number of resolutions times the image dimension (%i).' %
            (count, levels, levels * ndim))

    for level in range(levels):
        for d in range(ndim):
            if not schedule[level, d] > 0:
                raise ConfigurationError(
                    'Invalid GridSpacingSchedule: factor %r for level %i, '
                    'dimension %i is not positive.' %
                    (schedule[level, d], level, d))

    return schedule


## The computer


class GridScheduleComputer:
    """ GridScheduleComputer(image, order=3, periodic_dim=-1, initial_transform=None)

    Computes the control point grid of each resolution level.

    Parameters
    ----------
    image : ImageDescription or array
        The geometry of the fixed image that the grids must cover.
    order : int
        The B-spline order (odd). Determines the margin of extra nodes
        around the image.
    periodic_dim : int or None
        The dimension along which the grid is periodic. Default the last.
    initial_transform : callable or None
        If given, the image corner points are mapped through this
        function (which takes and returns an (N, ndim) array) before
        the grids are placed, so that grids cover the region in which
        a composed B-spline transform is evaluated.

    Usage
    -----
    Set final_grid_spacing and schedule (or use set_default_schedule()),
    and then call get_grid() for each level. Alternatively, use
    from_params() to set things up from a configuration.

    """

    def __init__(self, image, order=3, periodic_dim=-1, initial_transform=None):

        if not isinstance(image, ImageDescription):
            image = ImageDescription(image)
        self._image = image
        self._order = check_spline_order(order)
        self._periodic_dim = normalize_periodic_dim(periodic_dim, image.ndim)
        self._initial_transform = initial_transform

        self._final_grid_spacing = None
        self._schedule = None
        self._grids = None

    @classmethod
    def from_params(cls, image, levels, params, order=3, periodic_dim=-1,
                    initial_transform=None):
        """ from_params(image, levels, params, order=3, periodic_dim=-1,
                        initial_transform=None)

        Create a schedule computer for the given number of levels, with
        the final grid spacing and schedule read from the configuration.
        Configuration errors are raised here, before any grid is computed.

        """
        computer = cls(image, order, periodic_dim, initial_transform)
        if not isinstance(params, Parameters):
            params = Parameters(params)
        computer.schedule = read_grid_spacing_schedule(params, levels,
                                                       computer.ndim)
        computer.final_grid_spacing = read_final_grid_spacing(
                                            params, computer.image.spacing)
        return computer

    ## Properties

    @property
    def image(self):
        """ The ImageDescription of the fixed image.
        """
        return self._image

    @property
    def ndim(self):
        return self._image.ndim

    @property
    def order(self):
        """ The B-spline order.
        """
        return self._order

    @property
    def periodic_dim(self):
        """ The periodic dimension (or None).
        """
        return self._periodic_dim

    @property
    def initial_transform(self):
        """ The initial transform to take into account (or None).
        """
        return self._initial_transform

    @initial_transform.setter
    def initial_transform(self, transform):
        self._initial_transform = transform
        self._grids = None

    @property
    def final_grid_spacing(self):
        """ The grid spacing (in physical units) at the last level.
        """
        return self._final_grid_spacing

    @final_grid_spacing.setter
    def final_grid_spacing(self, spacing):
        spacing = tuple([float(s) for s in spacing])
        if len(spacing) != self.ndim:
            raise ValueError('Final grid spacing must have %i elements.' %
                             self.ndim)
        if min(spacing) <= 0:
            raise ConfigurationError('Final grid spacing must be positive, '
                                     'got %r.' % (spacing, ))
        self._final_grid_spacing = spacing
        self._grids = None

    @property
    def schedule(self):
        """ The (levels x ndim) array of downsampling factors.
        """
        if self._schedule is None:
            return None
        return self._schedule.copy()

    @schedule.setter
    def schedule(self, schedule):
        schedule = np.array(schedule, dtype=np.float64)
        if schedule.ndim != 2 or schedule.shape[1] != self.ndim:
            raise ValueError('Schedule must be a (levels x %i) array.' %
                             self.ndim)
        if schedule.shape[0] < 1:
            raise ValueError('Schedule must have at least one level.')
        if not np.all(schedule > 0):
            raise ConfigurationError('Schedule factors must be positive.')
        self._schedule = schedule
        self._grids = None

    @property
    def number_of_levels(self):
        if self._schedule is None:
            return 0
        return self._schedule.shape[0]

    def set_default_schedule(self, levels, factor=2.0):
        """ set_default_schedule(levels, factor=2.0)

        Use a schedule in which the spacing is multiplied with the given
        factor for each level coarser than the final level.

        """
        self.schedule = default_schedule(levels, self.ndim, factor)

    ## Computing

    def get_grid(self, level):
        """ get_grid(level)

        Get the GridGeometry for the given resolution level. Computes
        the grids of all levels if that was not yet done.

        """
        if self._grids is None:
            self.compute_grids()
        if not 0 <= level < len(self._grids):
            raise IndexError('Level %i is out of range; there are %i levels.'
                             % (level, len(self._grids)))
        return self._grids[level]

    def compute_grids(self):
        """ compute_grids()

        Compute (and store) the grids for all resolution levels.
        Returns a list of GridGeometry instances.

        """
        if self._final_grid_spacing is None:
            raise RuntimeError('The final grid spacing must be set before '
                               'computing the grids.')
        if self._schedule is None:
            raise RuntimeError('The schedule must be set before computing '
                               'the grids.')

        lower, upper = self._bounding_box()
        periodic_sizes = self._periodic_sizes()
        self._grids = [self._compute_grid(level, lower, upper,
                                          periodic_sizes[level])
                       for level in range(self.number_of_levels)]
        return list(self._grids)

    def _periodic_sizes(self):
        """ _periodic_sizes()

        Get the number of nodes along the periodic dimension for each
        level (or a list of None's if there is no periodic dimension).

        The node count of the last level is the one closest to the
        requested spacing. Each coarser level takes the divisor of the
        count of the next finer level that best matches its requested
        spacing, so that consecutive levels always nest. A warning is
        given for each level where the spacing is adapted.

        """
        levels = self.number_of_levels
        p = self._periodic_dim
        if p is None:
            return [None] * levels

        period = self._image.size[p] * self._image.spacing[p]
        requested = [self._final_grid_spacing[p] * self._schedule[level, p]
                     for level in range(levels)]

        sizes = [0] * levels
        sizes[-1] = max(1, int(np.floor(period / requested[-1] + 0.5)))
        for level in reversed(range(levels - 1)):
            finer = sizes[level + 1]
            best, best_error = finer, None
            for n in range(1, finer + 1):
                if finer % n:
                    continue
                error = abs(period / n - requested[level])
                if best_error is None or error <= best_error + 1e-9:
                    best, best_error = n, error
            sizes[level] = best

        for level in range(levels):
            gs = period / sizes[level]
            if abs(gs - requested[level]) > 1e-9 * requested[level]:
                msg = ('The grid spacing in dimension %i at level %i was '
                       'adapted from %g to %g to fit the period (%g) of the '
                       'periodic dimension.' %
                       (p, level, requested[level], gs, period))
                logger.warning(msg)
                warnings.warn(msg, GeometryWarning, stacklevel=3)

        return sizes

    def _bounding_box(self):
        """ _bounding_box()

        Get the lower and upper bound of the image region, expressed
        along the axes of the image direction.

        """
        corners = self._image.corner_points()
        if self._initial_transform is not None:
            corners = np.asarray(self._initial_transform(corners),
                                 dtype=np.float64)
            if corners.shape != (2**self.ndim, self.ndim):
                raise ValueError('The initial transform must return an '
                                 '(N, ndim) array of points.')
        # Rows are points; p @ D is the point expressed in the image frame
        frame = corners.dot(self._image.direction)
        return frame.min(axis=0), frame.max(axis=0)

    def _compute_grid(self, level, lower, upper, periodic_size=None):

        image = self._image
        direction = image.direction
        order = self._order
        p = self._periodic_dim

        size, spacing, start = [], [], []

        for d in range(self.ndim):

            requested = self._final_grid_spacing[d] * self._schedule[level, d]

            if d == p:
                # Integer number of nodes in one period, no margin
                period = image.size[d] * image.spacing[d]
                size.append(periodic_size)
                spacing.append(period / periodic_size)
                start.append(direction[:, d].dot(image.origin))

            else:
                # Knots at center + k*spacing, covering the bounding box,
                # plus a margin for the B-spline support
                center = 0.5 * (lower[d] + upper[d])
                extent = upper[d] - lower[d]
                half = max(0, int(np.ceil(0.5 * extent / requested - 1e-9)))
                size.append(2 * half + order + 1)
                spacing.append(requested)
                start.append(center - (half + (order - 1) // 2) * requested)

        origin = direction.dot(np.array(start))
        grid = GridGeometry(size, spacing, origin, direction)
        logger.debug('Grid for level %i: size %r, spacing %r', level,
                     grid.size, grid.spacing)
        return grid
