"""Exceptions raised by the simulation harness."""

import numpy as np


class InvalidConfiguration(ValueError):
    """A run was configured with parameters the generative model rejects.

    Raised before any random draw so a failing run is cheap to diagnose.
    """


class DegenerateEstimation(ValueError):
    """Method-of-moments Beta estimation has no valid solution for some rows.

    Attributes
    ----------
    valid : ndarray of bool
        One entry per cell type; False where the estimate is invalid.
    cell_types : list of str
        Labels of the invalid rows.
    """

    def __init__(self, valid, cell_types):
        self.valid = np.asarray(valid, dtype=bool)
        self.cell_types = list(cell_types)
        super().__init__(
            f"Beta moment estimate is degenerate for {len(self.cell_types)} "
            f"cell type(s): {', '.join(self.cell_types)} "
            "(zero variance or over-dispersed beyond the Beta limit)")
