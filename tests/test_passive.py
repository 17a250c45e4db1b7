import numpy as np
import pytest

from perigrid import (PassiveEdgeSelector, GridGeometry, ConfigurationError,
                      FROZEN_SCALE)


def expected_frozen_mask(size, width, periodic_dim=None):
    """ Boolean array (z-y-x) that is True for nodes in the border band.
    """
    grids = np.meshgrid(*[np.arange(s) for s in reversed(size)],
                        indexing='ij')
    mask = np.zeros(tuple(reversed(size)), bool)
    ndim = len(size)
    for d in range(ndim):
        if d == periodic_dim:
            continue
        i = grids[ndim - 1 - d]
        mask |= (i < width) | (i >= size[d] - width)
    return mask


def test_zero_edge_width():

    g = GridGeometry((10, 8, 6))
    scales = PassiveEdgeSelector().compute_scales(g, 0)
    assert scales.shape == (g.number_of_parameters, )
    assert np.all(scales == 1.0)
    assert len(PassiveEdgeSelector().passive_offsets(g, 0)) == 0


def test_edge_width_3d():

    g = GridGeometry((10, 10, 10))
    selector = PassiveEdgeSelector(periodic_dim=None)

    for w in (1, 2, 3, 4):
        scales = selector.compute_scales(g, w)
        assert scales.shape == (3000, )
        assert set(np.unique(scales)) == {1.0, FROZEN_SCALE}

        # Each component has the same pattern
        per_component = scales.reshape(3, 10, 10, 10)
        mask = expected_frozen_mask((10, 10, 10), w)
        for c in range(3):
            assert np.all((per_component[c] == FROZEN_SCALE) == mask)

        # The inset has (10-2w)**3 free nodes
        assert np.sum(per_component[0] == 1.0) == (10 - 2 * w) ** 3

        index, size = selector.inset_region(g, w)
        assert index == (w, w, w)
        assert size == (10 - 2 * w, ) * 3

    # No inset left
    with pytest.raises(ConfigurationError) as err:
        selector.compute_scales(g, 5)
    assert 'dimension 0' in str(err.value)

    with pytest.raises(ConfigurationError):
        selector.compute_scales(g, -1)


def test_periodic_dim_not_shrunk():

    g = GridGeometry((6, 7, 4))
    selector = PassiveEdgeSelector()  # last dim is periodic

    scales = selector.compute_scales(g, 2)
    mask = expected_frozen_mask((6, 7, 4), 2, periodic_dim=2)
    per_component = scales.reshape(3, 4, 7, 6)
    for c in range(3):
        assert np.all((per_component[c] == FROZEN_SCALE) == mask)
    assert np.sum(per_component[0] == 1.0) == 2 * 3 * 4

    index, size = selector.inset_region(g, 2)
    assert index == (2, 2, 0)
    assert size == (2, 3, 4)

    # The periodic size does not limit the edge width, the others do
    with pytest.raises(ConfigurationError):
        selector.compute_scales(g, 3)


def test_passive_offsets():

    g = GridGeometry((4, 3))
    selector = PassiveEdgeSelector(periodic_dim=None, frozen_scale=1e6)
    offsets = selector.passive_offsets(g, 1)

    # Only nodes (1, 1) and (2, 1) are active; offsets 5 and 6
    active = [5, 6, 5 + 12, 6 + 12]
    expected = [i for i in range(24) if i not in active]
    assert offsets.tolist() == expected

    scales = selector.compute_scales(g, 1)
    assert scales[0] == 1e6
    assert scales[5] == 1.0


def test_grid_index_offset():

    # The inset is relative to the grid index
    g1 = GridGeometry((8, 8), index=(0, 0))
    g2 = GridGeometry((8, 8), index=(3, -2))
    selector = PassiveEdgeSelector(periodic_dim=None)

    assert np.all(selector.compute_scales(g1, 2) ==
                  selector.compute_scales(g2, 2))
    index, size = selector.inset_region(g2, 2)
    assert index == (5, 0)
    assert size == (4, 4)


if __name__ == '__main__':

    test_zero_edge_width()
    test_edge_width_3d()
    test_periodic_dim_not_shrunk()
    test_passive_offsets()
    test_grid_index_offset()
