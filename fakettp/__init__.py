"""fakettp: fake selected HTTP routes, reverse proxy everything else."""

__version__ = "1.0.0"
