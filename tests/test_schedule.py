import logging
import warnings

import numpy as np
import pytest

from perigrid import (GridScheduleComputer, ImageDescription, Parameters,
                      ConfigurationError, GeometryWarning, default_schedule,
                      read_final_grid_spacing, read_grid_spacing_schedule)

from bspline_helpers import get_image_2d, get_image_3d


def check_covers_image(grid, image, periodic_dim, order=3):
    """ Check that every voxel of the image lies in the region where
    the grid has full B-spline support.
    """
    corners = image.corner_points().dot(grid.direction)
    lower, upper = corners.min(axis=0), corners.max(axis=0)
    origin = grid.origin_in_frame()
    for d in range(grid.ndim):
        if d == periodic_dim:
            continue
        u_lower = (lower[d] - origin[d]) / grid.spacing[d]
        u_upper = (upper[d] - origin[d]) / grid.spacing[d]
        assert u_lower >= (order - 1) // 2 - 1e-9
        assert u_upper <= grid.size[d] - 1 - (order + 1) // 2 + 1e-9


def test_default_schedule():

    schedule = default_schedule(3, 2)
    assert schedule.shape == (3, 2)
    assert schedule.tolist() == [[4.0, 4.0], [2.0, 2.0], [1.0, 1.0]]

    schedule = default_schedule(1, 3)
    assert schedule.tolist() == [[1.0, 1.0, 1.0]]

    with pytest.raises(ValueError):
        default_schedule(0, 3)


def test_read_final_grid_spacing():

    # Default is 16 voxels
    spacing = read_final_grid_spacing({}, (0.5, 2.0))
    assert spacing == (8.0, 32.0)

    # Voxels, one value for all dimensions or one per dimension
    spacing = read_final_grid_spacing({'FinalGridSpacingInVoxels': 4}, (0.5, 2.0))
    assert spacing == (2.0, 8.0)
    params = Parameters(FinalGridSpacingInVoxels=[4, 2])
    spacing = read_final_grid_spacing(params, (0.5, 2.0))
    assert spacing == (2.0, 4.0)

    # Physical units take precedence
    params.FinalGridSpacingInPhysicalUnits = [10.0, 20.0]
    spacing = read_final_grid_spacing(params, (0.5, 2.0))
    assert spacing == (10.0, 20.0)

    with pytest.raises(ConfigurationError):
        read_final_grid_spacing({'FinalGridSpacingInVoxels': [1, 2, 3]}, (1, 1))
    with pytest.raises(ConfigurationError):
        read_final_grid_spacing({'FinalGridSpacingInPhysicalUnits': -2.0},
                                (1, 1))


def test_read_grid_spacing_schedule():

    # No entries: default
    schedule = read_grid_spacing_schedule({}, 3, 2)
    assert schedule.tolist() == default_schedule(3, 2).tolist()

    # One entry per level
    params = {'GridSpacingSchedule': [6.0, 3.0, 1.0]}
    schedule = read_grid_spacing_schedule(params, 3, 2)
    assert schedule.tolist() == [[6.0, 6.0], [3.0, 3.0], [1.0, 1.0]]

    # One entry per level per dimension
    params = {'GridSpacingSchedule': [4.0, 1.0, 2.0, 1.0, 1.0, 1.0]}
    schedule = read_grid_spacing_schedule(params, 3, 2)
    assert schedule.tolist() == [[4.0, 1.0], [2.0, 1.0], [1.0, 1.0]]

    # Invalid count: neither L nor L*D
    params = {'GridSpacingSchedule': [4.0, 2.0, 1.0, 1.0]}
    with pytest.raises(ConfigurationError) as err:
        read_grid_spacing_schedule(params, 3, 3)
    assert '4 entries' in str(err.value)

    # Not positive
    params = {'GridSpacingSchedule': [4.0, 0.0, 1.0]}
    with pytest.raises(ConfigurationError):
        read_grid_spacing_schedule(params, 3, 3)


def test_default_schedule_spacing():

    image = get_image_3d()
    levels = 3
    params = Parameters(FinalGridSpacingInVoxels=[2.0, 2.0, 2.0])

    with warnings.catch_warnings():
        warnings.simplefilter('error', GeometryWarning)
        computer = GridScheduleComputer.from_params(image, levels, params)
        grids = computer.compute_grids()

    assert computer.final_grid_spacing == (2.0, 2.0, 2.0)
    assert len(grids) == levels
    assert grids[0].spacing == (8.0, 8.0, 8.0)
    assert grids[1].spacing == (4.0, 4.0, 4.0)
    assert grids[2].spacing == (2.0, 2.0, 2.0)

    for level in range(levels):
        grid = computer.get_grid(level)
        assert grid is grids[level]
        for d in range(3):
            assert grid.spacing[d] == 2.0 * 2**(levels - 1 - level)
        assert grid.index == (0, 0, 0)
        assert np.all(grid.direction == np.eye(3))
        check_covers_image(grid, image, 2)

    # Non-periodic: extent 31, half = ceil(31 / 16) = 2 -> 2*2 + 4 nodes
    assert grids[0].size[0] == 8
    assert grids[0].size[1] == 8
    # Periodic: 32 / 8 nodes, no margin
    assert grids[0].size[2] == 4
    assert grids[2].size == (20, 20, 16)

    with pytest.raises(IndexError):
        computer.get_grid(3)


def test_periodic_spacing_adapted():

    # Period of 30, requested spacing of 8 -> 4 nodes of 7.5
    image = ImageDescription((20, 30), (1.0, 1.0))
    computer = GridScheduleComputer(image)
    computer.final_grid_spacing = (8.0, 8.0)
    computer.set_default_schedule(2)

    with pytest.warns(GeometryWarning):
        grids = computer.compute_grids()

    assert grids[1].size[1] == 4
    assert grids[1].spacing[1] == 7.5
    assert grids[1].spacing[0] == 8.0
    # Coarse level: 30 / 16 -> 2 nodes of 15
    assert grids[0].size[1] == 2
    assert grids[0].spacing[1] == 15.0


def test_periodic_spacing_adaption_is_logged(caplog):

    image = ImageDescription((20, 30), (1.0, 1.0))
    computer = GridScheduleComputer(image)
    computer.final_grid_spacing = (8.0, 8.0)
    computer.set_default_schedule(2)

    with caplog.at_level(logging.WARNING, logger='perigrid.schedule'):
        with pytest.warns(GeometryWarning):
            computer.compute_grids()

    messages = [r.getMessage() for r in caplog.records
                if r.levelno == logging.WARNING]
    assert len(messages) == 2
    assert any('level 1' in m and 'from 8 to 7.5' in m for m in messages)
    assert any('level 0' in m and 'from 16 to 15' in m for m in messages)


def test_periodic_sizes_nest():

    # 100 frames with the default of 16 voxels: 6.25 nodes at the last
    # level. Rounding each level on its own would give 2, 3 and 6 nodes.
    image = ImageDescription((64, 100))
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', GeometryWarning)
        computer = GridScheduleComputer.from_params(image, 3, {})
        grids = computer.compute_grids()

    assert [grid.size[1] for grid in grids] == [3, 3, 6]
    for coarse, fine in zip(grids[:-1], grids[1:]):
        assert fine.size[1] % coarse.size[1] == 0
    for grid in grids:
        assert abs(grid.size[1] * grid.spacing[1] - 100.0) < 1e-9
    assert [grid.spacing[0] for grid in grids] == [64.0, 32.0, 16.0]

    # A single level just rounds
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', GeometryWarning)
        computer = GridScheduleComputer.from_params(image, 1, {})
        assert computer.get_grid(0).size[1] == 6


def test_periodicity_round_trip():

    for n, spacing in [(30, 1.0), (17, 0.7), (64, 2.5), (5, 1.0)]:
        image = ImageDescription((12, n), (1.0, spacing), (0.0, 4.0))
        period = n * spacing
        computer = GridScheduleComputer(image, periodic_dim=1)
        computer.final_grid_spacing = (3.0, 3.3)
        computer.set_default_schedule(4)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', GeometryWarning)
            grids = computer.compute_grids()
        for grid in grids:
            assert abs(grid.size[1] * grid.spacing[1] - period) < 1e-9 * period
            # Starts at the first voxel
            assert grid.origin[1] == 4.0


def test_levels_are_nested():

    image = get_image_2d()
    computer = GridScheduleComputer(image)
    computer.final_grid_spacing = (2.0, 2.0)
    computer.set_default_schedule(4)
    grids = computer.compute_grids()

    for coarse, fine in zip(grids[:-1], grids[1:]):
        for d in range(2):
            offset = (coarse.origin[d] - fine.origin[d]) / fine.spacing[d]
            assert abs(offset - round(offset)) < 1e-9
            ratio = coarse.spacing[d] / fine.spacing[d]
            assert abs(ratio - 2.0) < 1e-9
        assert fine.size[1] == 2 * coarse.size[1]

    for grid in grids:
        check_covers_image(grid, image, 1)


def test_anisotropic_and_rotated():

    direction = [[0.0, -1.0], [1.0, 0.0]]
    image = ImageDescription((50, 20), (0.4, 1.5), (10.0, 5.0), direction)
    computer = GridScheduleComputer(image, periodic_dim=1)
    computer.final_grid_spacing = (2.0, 3.0)
    computer.set_default_schedule(3)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', GeometryWarning)
        grids = computer.compute_grids()

    for grid in grids:
        assert np.all(grid.direction == np.array(direction))
        check_covers_image(grid, image, 1)
        # Periodic axis starts at the image origin
        frame = grid.origin_in_frame()
        assert abs(frame[1] - np.array(direction)[:, 1].dot((10.0, 5.0))) < 1e-9


def test_initial_transform():

    image = get_image_2d()

    def shift(points):
        return points + np.array([10.0, 0.0])

    computer1 = GridScheduleComputer(image)
    computer1.final_grid_spacing = (2.0, 2.0)
    computer1.set_default_schedule(2)

    computer2 = GridScheduleComputer(image, initial_transform=shift)
    computer2.final_grid_spacing = (2.0, 2.0)
    computer2.set_default_schedule(2)

    for level in range(2):
        g1, g2 = computer1.get_grid(level), computer2.get_grid(level)
        assert g1.size == g2.size
        assert abs(g2.origin[0] - g1.origin[0] - 10.0) < 1e-9
        assert g2.origin[1] == g1.origin[1]

    # Setting the transform later invalidates the grids
    computer1.initial_transform = shift
    assert computer1.get_grid(1) == computer2.get_grid(1)


def test_schedule_computer_errors():

    image = get_image_2d()
    computer = GridScheduleComputer(image)

    with pytest.raises(RuntimeError):
        computer.compute_grids()  # nothing set
    computer.final_grid_spacing = (2.0, 2.0)
    with pytest.raises(RuntimeError):
        computer.compute_grids()  # no schedule

    with pytest.raises(ValueError):
        computer.schedule = [1.0, 1.0]
    with pytest.raises(ConfigurationError):
        computer.schedule = [[1.0, -1.0]]
    with pytest.raises(ConfigurationError):
        computer.final_grid_spacing = (2.0, 0.0)
    with pytest.raises(ValueError):
        computer.final_grid_spacing = (2.0, 2.0, 2.0)

    # Even orders do not nest
    with pytest.raises(ValueError):
        GridScheduleComputer(image, order=2)
    with pytest.raises(ValueError):
        GridScheduleComputer(image, periodic_dim=2)

    # Invalid schedule is detected before any grid is computed
    image = get_image_3d()
    params = {'GridSpacingSchedule': [4.0, 2.0, 1.0, 1.0]}
    with pytest.raises(ConfigurationError):
        GridScheduleComputer.from_params(image, 3, params)


if __name__ == '__main__':

    test_default_schedule()
    test_read_final_grid_spacing()
    test_read_grid_spacing_schedule()
    test_default_schedule_spacing()
    test_periodic_spacing_adapted()
    test_periodic_sizes_nest()
    test_periodicity_round_trip()
    test_levels_are_nested()
    test_anisotropic_and_rotated()
    test_initial_transform()
    test_schedule_computer_errors()
