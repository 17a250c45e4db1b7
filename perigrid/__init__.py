# flake8: noqa
""" Perigrid - periodic B-spline control grids for multi-resolution registration

Perigrid manages the control point grid of a periodic free-form B-spline
deformation during a coarse-to-fine registration. It computes the grid
for each resolution level, upsamples the optimized coefficients from
one level to the next, and selects the coefficients at the edges of the
grid that should not be optimized.
"""

__version__ = '0.1.0'


# Check compat
import sys
if sys.version_info < (3, 6):
    raise RuntimeError('Perigrid requires at least Python 3.6')

# Imports

from ._utils import Parameters, ConfigurationError, GeometryWarning

from .geometry import (ImageDescription, GridGeometry, wrap_index,
                       split_parameters, join_parameters)

from .schedule import (GridScheduleComputer, default_schedule,
                       read_final_grid_spacing, read_grid_spacing_schedule)

from .upsample import GridUpsampler, refinement_stencil

from .passive import PassiveEdgeSelector, FROZEN_SCALE

from .orchestrator import ResolutionOrchestrator, default_params

# Clean up
del sys
