"""
Example showing the grids of a periodic B-spline transform during a
multi-resolution registration of a 2D+t image. The "optimizer" here
just adds random values to the active coefficients.
"""

import logging

import numpy as np
import perigrid

logging.basicConfig(level=logging.INFO)

# A 2D+t image: 64x48 pixels of 0.8 mm, 20 time frames of 50 ms
image = perigrid.ImageDescription((64, 48, 20), (0.8, 0.8, 50.0))

params = perigrid.Parameters()
params.FinalGridSpacingInPhysicalUnits = [8.0, 8.0, 100.0]
params.GridSpacingSchedule = [4.0, 4.0, 2.0, 2.0, 2.0, 1.0, 1.0, 1.0, 1.0]
params.PassiveEdgeWidth = [1, 1, 0]

orc = perigrid.ResolutionOrchestrator(image, 3, params)


def optimize(level, geometry, parameters, scales):
    rng = np.random.RandomState(level)
    delta = rng.normal(0, 0.1, parameters.shape)
    delta[scales != 1.0] = 0.0
    print('level %i: %i of %i coefficients active' %
          (level, (scales == 1.0).sum(), len(scales)))
    return parameters + delta


final = orc.register(optimize)

for level, geometry, parameters in orc.history:
    print(level, geometry, 'max coefficient %1.3f' % np.abs(parameters).max())

print(orc.write_records())
