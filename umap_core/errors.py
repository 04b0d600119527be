# Author: Leland McInnes <leland.mcinnes@gmail.com>
#
# License: BSD 3 clause


class UMAPError(Exception):
    """Base class for every error raised while fitting or transforming."""


class ConfigError(UMAPError, ValueError):
    """An estimator parameter, or a combination of them, is invalid."""


class InvalidInputError(UMAPError, ValueError):
    """The data handed to ``fit`` or ``transform`` cannot be embedded."""


class NumericInstabilityError(UMAPError, ValueError):
    """A numerical stage diverged and there is no safe value to fall back on."""


class MetricError(UMAPError, ValueError):
    """The distance function raised or returned a non-finite value.

    Parameters
    ----------
    i, j: int
        Row indices of the pair of points being compared.

    value: float or None
        The offending distance, or None when the metric raised.
    """

    def __init__(self, i, j, value=None, message=None):
        self.i = int(i)
        self.j = int(j)
        self.value = value
        if message is None:
            if value is None:
                message = "Metric failed between points {} and {}".format(self.i, self.j)
            else:
                message = "Metric returned {} between points {} and {}".format(
                    value, self.i, self.j
                )
        super(MetricError, self).__init__(message)


class FitAbortedError(UMAPError):
    """The epoch callback requested the optimization to stop."""
