"""
Helpers for the tests: a slow but simple evaluator of the field that a
cubic B-spline grid represents, and some test images.
"""

import itertools

import numpy as np

from perigrid import ImageDescription, split_parameters


def bspline3(t):
    """ The centered cubic B-spline.
    """
    t = abs(t)
    if t < 1.0:
        return 2.0 / 3.0 - t * t + 0.5 * t * t * t
    elif t < 2.0:
        return (2.0 - t) ** 3 / 6.0
    else:
        return 0.0


def evaluate(geometry, parameters, point, periodic_dim=None):
    """ Evaluate all components of the field at the given physical point.
    Coefficients outside the grid are zero, except along the periodic
    dimension, where indices wrap around.
    """
    components = split_parameters(geometry, parameters)
    ndim = geometry.ndim
    point = np.asarray(point, np.float64)

    # Continuous node coordinates
    frame = geometry.direction.T.dot(point - np.array(geometry.origin))
    u = frame / np.array(geometry.spacing)

    ranges = []
    for d in range(ndim):
        first = int(np.floor(u[d])) - 1
        ranges.append(range(first, first + 4))

    result = np.zeros((ndim, ), np.float64)
    for node in itertools.product(*ranges):
        weight = 1.0
        index = []
        for d in range(ndim):
            weight *= bspline3(u[d] - node[d])
            i = node[d]
            if d == periodic_dim:
                i = i % geometry.size[d]
            elif not 0 <= i < geometry.size[d]:
                weight = 0.0
            index.append(i)
        if weight == 0.0:
            continue
        index = tuple(reversed(index))
        for c in range(ndim):
            result[c] += weight * components[c][index]
    return result


def random_points(image, n, seed=0, margin=0.0):
    """ Get n random physical points inside the image region.
    """
    rng = np.random.RandomState(seed)
    points = []
    for i in range(n):
        index = np.array([rng.uniform(margin, s - 1 - margin)
                          for s in image.size])
        offset = image.direction.dot(index * np.array(image.spacing))
        points.append(np.array(image.origin) + offset)
    return points


def get_image_2d():
    """ A 2D+t image: 40 pixels of 0.5 in x, 32 time frames of 1.0.
    """
    return ImageDescription((40, 32), (0.5, 1.0), (3.0, 0.0))


def get_image_3d():
    """ A 3D image of 32**3 isotropic voxels.
    """
    return ImageDescription((32, 32, 32))
