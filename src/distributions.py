import numpy as np

import config


class EmpiricalDistribution:
    """
    Histogram of non-negative integers (sequence lengths) smoothed over a sliding window.

    Values above max are ignored when training. Log-probabilities are floored at
    log(tail_p), so unseen lengths never get a zero probability.
    """

    def __init__(self, max_value=config.LENGTH_MAX, window=config.LENGTH_WINDOW,
                 tail_p=config.LENGTH_TAIL_P):
        self.max_value = max_value
        self.window = window
        self.tail_p = tail_p
        self.bins = np.zeros(max_value + 1)
        self.weight_sum = 0.0

    def train(self, value, weight=1.0):
        if 0 <= value < len(self.bins):
            self.bins[value] += weight
            self.weight_sum += weight

    def reset(self):
        self.bins[:] = 0
        self.weight_sum = 0.0

    def estimate(self, value):
        """Log-probability of a value."""
        lo = max(0, value - self.window // 2)
        hi = min(len(self.bins), value + self.window // 2 + 1)
        floor = np.log(self.tail_p)
        if lo >= hi or self.weight_sum <= 0:
            return floor
        mean = self.bins[lo:hi].mean()
        if mean <= 0:
            return floor
        return max(np.log(mean) - np.log(self.weight_sum), floor)

    def generate(self, rng=None):
        rng = rng if rng is not None else np.random.default_rng()
        p = np.exp(self.log_table())
        return int(rng.choice(len(self.bins), p=p / p.sum()))

    def log_table(self):
        """estimate() for every value in [0, max_value] at once."""
        n = len(self.bins)
        half = self.window // 2
        cumsum = np.concatenate(([0.0], np.cumsum(self.bins)))
        values = np.arange(n)
        lo = np.maximum(0, values - half)
        hi = np.minimum(n, values + half + 1)
        mean = (cumsum[hi] - cumsum[lo]) / (hi - lo)
        floor = np.log(self.tail_p)
        if self.weight_sum <= 0:
            return np.full(n, floor)
        with np.errstate(divide="ignore"):
            return np.maximum(np.log(mean) - np.log(self.weight_sum), floor)

    def copy(self):
        other = EmpiricalDistribution(self.max_value, self.window, self.tail_p)
        other.bins = self.bins.copy()
        other.weight_sum = self.weight_sum
        return other

    def clear_copy(self):
        return EmpiricalDistribution(self.max_value, self.window, self.tail_p)

    def __repr__(self):
        return f"Empirical(w={self.window})"
