"""
Site simulation under Markov models.

Used to generate synthetic data with known parameters, e.g. to check that
the estimates approach the truth as the number of sites grows.
"""

from .markov import MarkovSiteSimulator, random_fake_counts
from .output import SimulationOutput

__all__ = [
    'MarkovSiteSimulator',
    'SimulationOutput',
    'random_fake_counts',
]
