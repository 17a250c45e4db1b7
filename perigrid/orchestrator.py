"""
Drives the grid computations through the resolution levels of a
registration.
"""

import logging

import numpy as np

from ._utils import Parameters, ConfigurationError
from .geometry import (ImageDescription, GridGeometry, normalize_periodic_dim,
                       split_parameters)
from .schedule import GridScheduleComputer
from .upsample import GridUpsampler
from .passive import PassiveEdgeSelector

logger = logging.getLogger(__name__)

# States of the orchestrator
UNINITIALIZED = 'uninitialized'
PLACEHOLDER = 'placeholder'
LEVEL = 'level'
DONE = 'done'


def default_params():
    """ default_params()

    Get a Parameters object with the default configuration. The
    FinalGridSpacingInPhysicalUnits and GridSpacingSchedule keys are
    absent by default; setting them selects the physical-units method
    and a custom schedule, respectively.

    """
    params = Parameters()
    params.FinalGridSpacingInVoxels = 16.0
    params.PassiveEdgeWidth = 0
    return params


class ResolutionOrchestrator:
    """ ResolutionOrchestrator(image, number_of_levels, params=None,
                               periodic_dim=-1, order=3,
                               initial_transform=None, use_composition=False)

    Owns the control point grid and parameter vector of a periodic
    B-spline transform during a multi-resolution registration. The
    registration loop calls before_run() once, then advance_to_level()
    at the start of each level, handing over the parameters it
    optimized at the previous level, and finish() at the end.

    States: 'uninitialized' -> 'placeholder' -> 'level' (0 .. L-1) -> 'done'

    In the 'placeholder' state, a grid with one node per dimension and
    zero parameters is installed. This allows a registration to check
    the number of parameters before the first level is set up.

    Parameters
    ----------
    image : ImageDescription or array
        The geometry of the fixed image.
    number_of_levels : int
        The number of resolution levels.
    params : dict or Parameters
        The configuration: FinalGridSpacingInVoxels,
        FinalGridSpacingInPhysicalUnits, GridSpacingSchedule and
        PassiveEdgeWidth. Missing keys take their default value.
    periodic_dim : int or None
        The periodic dimension. Default the last.
    order : int
        The (odd) B-spline order. Default 3.
    initial_transform : callable or None
        The initial transform that the B-spline transform is composed
        with. Only used when use_composition is True.
    use_composition : bool
        Whether the B-spline transform is composed with the initial
        transform (so its grid must cover the transformed image).

    """

    def __init__(self, image, number_of_levels, params=None, periodic_dim=-1,
                 order=3, initial_transform=None, use_composition=False):

        if not isinstance(image, ImageDescription):
            image = ImageDescription(image)
        self._image = image

        self._number_of_levels = int(number_of_levels)
        if self._number_of_levels < 1:
            raise ValueError('The number of resolution levels must be at '
                             'least 1.')

        self._params = default_params()
        if params is not None:
            self._params.update(params)

        self._periodic_dim = normalize_periodic_dim(periodic_dim, image.ndim)
        self._order = order
        self._initial_transform = initial_transform
        self._use_composition = bool(use_composition)

        self._upsampler = GridUpsampler(order, self._periodic_dim)
        self._selector = PassiveEdgeSelector(self._periodic_dim)
        self._schedule_computer = None

        # Current state
        self._state = UNINITIALIZED
        self._level = -1
        self._geometry = None
        self._parameters = None
        self._scales = None
        self._history = []

    ## Properties

    @property
    def state(self):
        """ The current state: 'uninitialized', 'placeholder', 'level'
        or 'done'.
        """
        return self._state

    @property
    def level(self):
        """ The current resolution level (-1 before the first level).
        """
        return self._level

    @property
    def number_of_levels(self):
        return self._number_of_levels

    @property
    def params(self):
        """ The configuration (a Parameters object).
        """
        return self._params

    @property
    def periodic_dim(self):
        return self._periodic_dim

    @property
    def geometry(self):
        """ The GridGeometry of the installed grid.
        """
        return self._geometry

    @property
    def parameters(self):
        """ A copy of the installed parameter vector; the initial
        parameters for the optimizer at the current level.
        """
        if self._parameters is None:
            return None
        return self._parameters.copy()

    @property
    def scales(self):
        """ A copy of the optimizer scales for the current level.
        """
        if self._scales is None:
            return None
        return self._scales.copy()

    @property
    def schedule_computer(self):
        """ The GridScheduleComputer (available after before_run()).
        """
        return self._schedule_computer

    @property
    def history(self):
        """ A list of (level, geometry, parameters) tuples for the
        completed levels, where parameters are the optimized ones
        (read-only).
        """
        return list(self._history)

    ## State transitions

    def before_run(self):
        """ before_run()

        Precompute the grids of all levels and install the placeholder
        grid with zero parameters.

        """
        if self._state != UNINITIALIZED:
            raise RuntimeError('before_run() can only be called once.')

        initial_transform = None
        if self._use_composition:
            initial_transform = self._initial_transform

        computer = GridScheduleComputer.from_params(
                        self._image, self._number_of_levels, self._params,
                        self._order, self._periodic_dim, initial_transform)
        computer.compute_grids()
        self._schedule_computer = computer

        self._install(GridGeometry.placeholder(self._image.ndim))
        self._scales = np.ones_like(self._parameters)
        self._state = PLACEHOLDER
        logger.info('Precomputed grids for %i resolution levels',
                    self._number_of_levels)

    def advance_to_level(self, level, last_parameters=None):
        """ advance_to_level(level, last_parameters=None)

        Install the grid for the given level. For level 0 the parameters
        are all zero. For later levels, last_parameters must be the
        parameters that were optimized at the previous level; these are
        upsampled to the new grid. Then the optimizer scales are computed
        using the PassiveEdgeWidth for this level.

        """
        level = int(level)

        if self._state == UNINITIALIZED:
            raise RuntimeError('Call before_run() before advancing to a level.')
        elif self._state == DONE:
            raise RuntimeError('Cannot advance to level %i: the run is done.'
                               % level)
        elif level != self._level + 1:
            raise RuntimeError('Cannot advance to level %i from level %i; '
                               'levels must be visited in order.' %
                               (level, self._level))
        elif level >= self._number_of_levels:
            raise RuntimeError('Cannot advance to level %i: there are only '
                               '%i levels.' % (level, self._number_of_levels))

        geometry = self._schedule_computer.get_grid(level)

        if level == 0:
            self._install(geometry)
        else:
            if last_parameters is None:
                raise ValueError('The parameters of level %i are needed to '
                                 'advance to level %i.' % (level-1, level))
            previous = self._geometry
            last_parameters = self._check_parameters(previous, last_parameters)
            try:
                upsampled = self._upsampler.upsample(previous, last_parameters,
                                                     geometry)
            except ConfigurationError as err:
                raise ConfigurationError('Cannot advance to level %i: %s' %
                                         (level, err)) from err
            last_parameters.flags.writeable = False
            self._history.append((level - 1, previous, last_parameters))
            self._install(geometry, upsampled)

        self._level = level
        self._state = LEVEL

        edge_width = self._read_passive_edge_width(level)
        self._scales = self._selector.compute_scales(geometry, edge_width)

        logger.info('Level %i: grid size %r, spacing %s, %i parameters',
                    level, geometry.size,
                    ', '.join(['%1.2f' % s for s in geometry.spacing]),
                    geometry.number_of_parameters)

    def finish(self, last_parameters=None):
        """ finish(last_parameters=None)

        End the run after the last level. If given, last_parameters are
        the parameters optimized at the last level; they become the
        final parameters of the transform.

        """
        if self._state != LEVEL or self._level != self._number_of_levels - 1:
            raise RuntimeError('finish() can only be called at the last level.')
        if last_parameters is not None:
            last_parameters = self._check_parameters(self._geometry,
                                                     last_parameters)
            self._parameters = last_parameters
        final = self._parameters.copy()
        final.flags.writeable = False
        self._history.append((self._level, self._geometry, final))
        self._state = DONE

    def register(self, optimize):
        """ register(optimize)

        Run all transitions of a registration. The given function is
        called for each level as ``optimize(level, geometry, parameters,
        scales)`` and must return the optimized parameter vector.
        Returns the final parameter vector.

        """
        if self._state == UNINITIALIZED:
            self.before_run()
        last = None
        for level in range(self._level + 1, self._number_of_levels):
            self.advance_to_level(level, last)
            last = optimize(level, self._geometry, self.parameters,
                            self.scales)
        self.finish(last)
        return self.parameters

    ## Records

    def write_records(self):
        """ write_records()

        Get the records (GridSize, GridIndex, GridSpacing, GridOrigin and
        GridDirection) that describe the installed grid.

        """
        if self._geometry is None:
            raise RuntimeError('No grid is installed.')
        return self._geometry.to_records()

    def read_records(self, records, parameters=None):
        """ read_records(records, parameters=None)

        Install the grid described by the given records, and then the
        given parameters (zeros if not given). The grid must be set
        first, since the number of parameters follows from the grid size.
        The orchestrator is in the 'done' state afterwards.

        """
        if self._state not in (UNINITIALIZED, DONE):
            raise RuntimeError('Cannot read records during a run (state %r).'
                               % self._state)
        geometry = GridGeometry.from_records(records, self._image.ndim)
        if parameters is not None:
            parameters = self._check_parameters(geometry, parameters)
        self._install(geometry, parameters)
        self._scales = np.ones_like(self._parameters)
        self._state = DONE

    ## Helpers

    def _install(self, geometry, parameters=None):
        if parameters is None:
            parameters = np.zeros((geometry.number_of_parameters, ),
                                  np.float64)
        self._geometry = geometry
        self._parameters = parameters

    def _check_parameters(self, geometry, parameters):
        parameters = np.array(parameters, dtype=np.float64)
        split_parameters(geometry, parameters)  # raises on a size mismatch
        return parameters

    def _read_passive_edge_width(self, level):
        entries = self._params.entries('PassiveEdgeWidth')
        if not entries:
            return 0
        elif len(entries) == 1:
            value = entries[0]
        elif len(entries) == self._number_of_levels:
            value = entries[level]
        else:
            raise ConfigurationError(
                'PassiveEdgeWidth should have 1 or %i entries, got %i.' %
                (self._number_of_levels, len(entries)))
        if int(value) != value:
            raise ConfigurationError('PassiveEdgeWidth must be an integer, '
                                     'got %r for level %i.' % (value, level))
        return int(value)
