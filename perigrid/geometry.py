"""
Descriptions of image and grid geometry.

A note on dimension order: all per-dimension tuples (size, spacing,
origin, index) are given in x-y-z order, so element 0 is the first
(fastest varying) dimension. The coefficients of one component of a
grid are stored in a numpy array in z-y-x order (the reversed size),
such that the flat (C-order) offset of node (x, y, z) is
x + y*sx + z*sx*sy. A parameter vector concatenates the flat arrays
of all components.
"""

import numpy as np

from ._utils import Parameters, ConfigurationError


GRID_RECORD_KEYS = ('GridSize', 'GridIndex', 'GridSpacing', 'GridOrigin',
                    'GridDirection')


## Helper functions


def wrap_index(size, periodic_dim, axis, i):
    """ wrap_index(size, periodic_dim, axis, i)

    Map the (possibly out of range) node index i along the given axis
    to a valid index. Along the periodic dimension, indices wrap around,
    so an index past the last node refers to a node near the first one
    (and vice versa). Along any other axis the index is returned as is.
    Also works for integer arrays.

    """
    if periodic_dim is not None and axis == periodic_dim:
        return i % size[axis]
    return i


def normalize_periodic_dim(periodic_dim, ndim):
    """ normalize_periodic_dim(periodic_dim, ndim)

    Turn a negative periodic dimension into a positive one and check
    that it is in range. None means there is no periodic dimension.

    """
    if periodic_dim is None:
        return None
    periodic_dim = int(periodic_dim)
    if periodic_dim < 0:
        periodic_dim += ndim
    if not 0 <= periodic_dim < ndim:
        raise ValueError('Periodic dimension %i is out of range for %i '
                         'dimensions.' % (periodic_dim, ndim))
    return periodic_dim


def check_direction(direction, ndim):
    """ check_direction(direction, ndim)

    Return the direction as a float64 (ndim x ndim) array, raising
    ValueError if it is not orthonormal.

    """
    if direction is None:
        return np.eye(ndim)
    direction = np.array(direction, dtype=np.float64)
    if direction.shape != (ndim, ndim):
        raise ValueError('Direction must be a %ix%i matrix, got shape %r.' %
                         (ndim, ndim, direction.shape))
    if not np.allclose(direction.T.dot(direction), np.eye(ndim), atol=1e-6):
        raise ValueError('Direction must be orthonormal.')
    return direction


def _as_tuple(values, ndim, name, cast, default):
    if values is None:
        return tuple([cast(default) for i in range(ndim)])
    values = tuple([cast(v) for v in values])
    if len(values) != ndim:
        raise ValueError('%s must have %i elements, got %i.' %
                         (name, ndim, len(values)))
    return values


## Classes


class ImageDescription:
    """ ImageDescription(size, spacing=None, origin=None, direction=None)

    Describes the geometry of the (fixed) image that the grids must
    cover: the number of voxels, the spacing between them, the physical
    position of the first voxel and the orientation of the image axes.
    All tuples are in x-y-z order.

    Instead of a size tuple, any object that has a ``shape`` can be
    given (e.g. a numpy array or anisotropic array). In that case the
    shape and the optional ``sampling`` and ``origin`` attributes are
    assumed to be in array (z-y-x) order, and are reversed.

    """

    def __init__(self, size, spacing=None, origin=None, direction=None):

        if hasattr(size, 'shape') and isinstance(size.shape, (list, tuple)):
            # Array given
            im = size
            size = tuple(reversed(im.shape))
            if spacing is None and hasattr(im, 'sampling'):
                spacing = tuple(reversed(im.sampling))
            if origin is None and hasattr(im, 'origin'):
                origin = tuple(reversed(im.origin))

        if not isinstance(size, (list, tuple)):
            raise TypeError('Invalid size for ImageDescription.')

        ndim = len(size)
        self._size = _as_tuple(size, ndim, 'size', int, 1)
        self._spacing = _as_tuple(spacing, ndim, 'spacing', float, 1.0)
        self._origin = _as_tuple(origin, ndim, 'origin', float, 0.0)
        self._direction = check_direction(direction, ndim)

        if min(self._size) < 1:
            raise ValueError('Image size must be at least 1 in each dimension.')
        if min(self._spacing) <= 0:
            raise ValueError('Image spacing must be positive.')

    def __repr__(self):
        return '<ImageDescription size=%r spacing=%r origin=%r>' % (
                    self._size, self._spacing, self._origin)

    @property
    def ndim(self):
        """ The number of dimensions of the image.
        """
        return len(self._size)

    @property
    def size(self):
        """ The number of voxels in each dimension.
        """
        return self._size

    @property
    def spacing(self):
        """ The distance between voxels (in world units) for each dimension.
        """
        return self._spacing

    @property
    def origin(self):
        """ The physical position of the first voxel.
        """
        return self._origin

    @property
    def direction(self):
        """ The orientation matrix; column d is the direction of axis d.
        """
        return self._direction.copy()

    def corner_points(self):
        """ corner_points()

        Get the physical positions of the 2**ndim corner voxels as an
        (N, ndim) array.

        """
        ndim = self.ndim
        spacing = np.array(self._spacing)
        origin = np.array(self._origin)
        corners = []
        for i in range(2**ndim):
            index = np.array([(self._size[d]-1) * ((i >> d) & 1)
                              for d in range(ndim)], dtype=np.float64)
            corners.append(origin + self._direction.dot(index * spacing))
        return np.array(corners)


class GridGeometry:
    """ GridGeometry(size, spacing=None, origin=None, direction=None, index=None)

    Immutable description of a control point grid: the index of the
    first node, the number of nodes in each dimension, the physical
    spacing between nodes, the physical position of the first node and
    the orientation matrix. All tuples are in x-y-z order.

    The node with multi-index n lies at the physical point
    ``origin + direction @ ((n - index) * spacing)``.

    """

    __slots__ = ['_size', '_spacing', '_origin', '_direction', '_index']

    def __init__(self, size, spacing=None, origin=None, direction=None,
                 index=None):

        ndim = len(size)
        self._size = _as_tuple(size, ndim, 'size', int, 1)
        self._spacing = _as_tuple(spacing, ndim, 'spacing', float, 1.0)
        self._origin = _as_tuple(origin, ndim, 'origin', float, 0.0)
        self._index = _as_tuple(index, ndim, 'index', int, 0)

        direction = check_direction(direction, ndim)
        direction.flags.writeable = False
        self._direction = direction

        if min(self._size) < 1:
            raise ValueError('Grid size must be at least 1 in each '
                             'dimension, got %r.' % (self._size, ))
        if min(self._spacing) <= 0:
            raise ValueError('Grid spacing must be positive, got %r.' %
                             (self._spacing, ))

    @classmethod
    def placeholder(cls, ndim):
        """ placeholder(ndim)

        A grid with a single node in each dimension, unit spacing and
        zero origin. Used before the real grid of the first resolution
        level is known.

        """
        return cls([1 for i in range(ndim)])

    def __repr__(self):
        return '<GridGeometry size=%r spacing=%r origin=%r>' % (
                    self._size, self._spacing, self._origin)

    def __eq__(self, other):
        if not isinstance(other, GridGeometry):
            return NotImplemented
        return (self._size == other._size and
                self._index == other._index and
                self._spacing == other._spacing and
                self._origin == other._origin and
                np.array_equal(self._direction, other._direction))

    def __ne__(self, other):
        eq = self.__eq__(other)
        return eq if eq is NotImplemented else not eq

    __hash__ = None

    ## Properties

    @property
    def ndim(self):
        """ The number of dimensions of the grid.
        """
        return len(self._size)

    @property
    def size(self):
        """ The number of nodes in each dimension.
        """
        return self._size

    @property
    def index(self):
        """ The index of the first node in each dimension.
        """
        return self._index

    @property
    def spacing(self):
        """ The physical distance between nodes in each dimension.
        """
        return self._spacing

    @property
    def origin(self):
        """ The physical position of the first node.
        """
        return self._origin

    @property
    def direction(self):
        """ The (read-only) orientation matrix.
        """
        return self._direction

    @property
    def number_of_nodes(self):
        return int(np.prod(self._size))

    @property
    def number_of_parameters(self):
        """ The length of a parameter vector for this grid: one
        coefficient per dimension per node.
        """
        return self.ndim * self.number_of_nodes

    @property
    def coefficient_shape(self):
        """ The shape of the coefficient array of one component
        (the reversed size).
        """
        return tuple(reversed(self._size))

    ## Methods

    def node_to_point(self, node):
        """ node_to_point(node)

        Get the physical position of the node with the given multi-index.

        """
        node = np.asarray(node, dtype=np.float64) - np.array(self._index)
        offset = self._direction.dot(node * np.array(self._spacing))
        return np.array(self._origin) + offset

    def origin_in_frame(self):
        """ origin_in_frame()

        The origin expressed along the grid axes (i.e. multiplied with
        the transposed direction).

        """
        return self._direction.T.dot(np.array(self._origin))

    def replace(self, **kwargs):
        """ replace(**kwargs)

        Get a new geometry with the given properties (size, spacing,
        origin, direction, index) replaced.

        """
        d = dict(size=self._size, spacing=self._spacing, origin=self._origin,
                 direction=self._direction, index=self._index)
        d.update(kwargs)
        return GridGeometry(**d)

    def is_same(self, other, tol=1e-9):
        """ is_same(other, tol=1e-9)

        Whether the other geometry describes the same grid, allowing
        for tiny differences in the floating point values.

        """
        if self._size != other.size or self._index != other.index:
            return False
        return (np.allclose(self._spacing, other.spacing, rtol=tol, atol=tol) and
                np.allclose(self._origin, other.origin, rtol=tol, atol=tol) and
                np.allclose(self._direction, other.direction, atol=tol))

    ## Records

    def to_records(self):
        """ to_records()

        Get a Parameters object with the GridSize, GridIndex, GridSpacing,
        GridOrigin and GridDirection records. The direction is written
        column by column: direction[j, i] with i the outer loop.

        """
        ndim = self.ndim
        direction = [float(self._direction[j, i])
                     for i in range(ndim) for j in range(ndim)]
        values = (list(self._size), list(self._index), list(self._spacing),
                  list(self._origin), direction)
        return Parameters(zip(GRID_RECORD_KEYS, values))

    @classmethod
    def from_records(cls, records, ndim=None):
        """ from_records(records, ndim=None)

        Reconstruct a geometry from its records (a dict or Parameters).
        Absent records take default values: size 1, index 0, spacing 1,
        origin 0 and an identity direction. The number of dimensions is
        derived from GridSize if not given.

        """
        if not isinstance(records, Parameters):
            records = Parameters(records)

        if ndim is None:
            ndim = records.count('GridSize')
        if ndim < 1:
            raise ConfigurationError('Cannot reconstruct grid: GridSize is '
                                     'missing.')

        def read(key, cast, default, n=ndim):
            values = records.entries(key)
            if not values:
                return [cast(default) for i in range(n)]
            if len(values) != n:
                raise ConfigurationError('Grid record %s should have %i '
                                         'entries, got %i.' %
                                         (key, n, len(values)))
            return [cast(v) for v in values]

        size_key, index_key, spacing_key, origin_key, direction_key = \
            GRID_RECORD_KEYS
        size = read(size_key, int, 1)
        index = read(index_key, int, 0)
        spacing = read(spacing_key, float, 1.0)
        origin = read(origin_key, float, 0.0)

        direction = np.eye(ndim)
        flat = read(direction_key, float, 0.0, ndim * ndim)
        if records.count(direction_key):
            for i in range(ndim):
                for j in range(ndim):
                    direction[j, i] = flat[i * ndim + j]

        try:
            return cls(size, spacing, origin, direction, index)
        except ValueError as err:
            raise ConfigurationError('Invalid grid records: %s' % err)


## Parameter vectors


def split_parameters(geometry, parameters):
    """ split_parameters(geometry, parameters)

    Split a parameter vector in a list of coefficient arrays, one for
    each component, shaped as the geometry's coefficient_shape. The
    arrays are views on the given vector if possible.

    """
    parameters = np.asarray(parameters, dtype=np.float64)
    if parameters.ndim != 1:
        raise ValueError('Parameter vector must be one-dimensional.')
    if parameters.size != geometry.number_of_parameters:
        raise ValueError('Parameter vector has %i elements, but the grid '
                         'of size %r needs %i.' %
                         (parameters.size, geometry.size,
                          geometry.number_of_parameters))
    n = geometry.number_of_nodes
    shape = geometry.coefficient_shape
    return [parameters[c*n:(c+1)*n].reshape(shape)
            for c in range(geometry.ndim)]


def join_parameters(components):
    """ join_parameters(components)

    Concatenate the coefficient arrays of all components into a single
    parameter vector (float64).

    """
    return np.concatenate([np.asarray(c, dtype=np.float64).ravel()
                           for c in components])
