from enum import Enum

import numpy as np

import config
from markov import MarkovChain


class Strategy(Enum):
    MEAN = "mean"
    FIRST = "first"
    FIXED = "fixed"


class Approximation:
    """
    Settings of a fallthru chain: the chain order, the lowest order to fall back to,
    the fallback strategy and the fixed thresholds for unseen states.
    """

    def __init__(self, order, min_order, strategy=Strategy.MEAN,
                 init_threshold=config.INIT_THRESHOLD, trans_threshold=config.TRANS_THRESHOLD):
        if not 0 <= min_order < order:
            raise ValueError(f"Minimal order must be in [0, {order}), got {min_order}")
        self.order = order
        self.min_order = min_order
        self.strategy = Strategy(strategy)
        self.init_threshold = init_threshold
        self.trans_threshold = trans_threshold

    def __repr__(self):
        return f"Approximation(order={self.order}, min_order={self.min_order}, " \
               f"strategy={self.strategy.name})"


class FallthruChain(MarkovChain):
    """
    First-dependency Markov chain that approximates transitions it has never seen
    using lower-order chains trained alongside it.

    Under Strategy.FIXED unseen transitions get approx.trans_threshold. Otherwise
    the tail is shortened one symbol at a time down to min_order and the
    transition probabilities of the matching chains are averaged (MEAN) or the
    first non-zero one is taken (FIRST).
    """

    _STATISTICS = MarkovChain._STATISTICS + ("subchains",)

    def __init__(self, approx, states, **kwargs):
        self.min_order = approx.min_order
        self.strategy = approx.strategy
        self.init_threshold = approx.init_threshold
        self.trans_threshold = approx.trans_threshold
        super().__init__(1, approx.order, states, **kwargs)

    def _initialize(self):
        super()._initialize()
        self.subchains = [None] * (self.order + 1)
        for i in range(self.min_order, self.order):
            self.subchains[i] = MarkovChain(1, i, self.states, dense_limit=self.dense_limit,
                                            p_floor=self.p_floor)
        self.subchains[self.order] = self

    def approximation(self):
        return Approximation(self.order, self.min_order, self.strategy,
                             self.init_threshold, self.trans_threshold)

    def train(self, observed, hidden, weight=1.0):
        super().train(observed, hidden, weight)
        if weight <= 0.0:
            return
        for i in range(self.min_order, self.order):
            # Lower-order chains see the same transitions, so they skip the first order - i symbols
            shift = self.order - i
            if shift < len(observed):
                self.subchains[i].train(observed[shift:], hidden[shift:], weight)

    def reset(self):
        super().reset()
        for i in range(self.min_order, self.order):
            self.subchains[i].reset()

    def get_initial_p(self, fragment):
        return max(super().get_initial_p(fragment), self.init_threshold)

    def get_trans_p(self, tail, head):
        head_index = self.factory.total_index(head)
        if self.strategy is Strategy.FIXED:
            row = self._row(self.factory.total_index(tail))
            if row is None or row[head_index] == 0:
                return self.trans_threshold
            return row[head_index] / row[-1]

        result = 0.0
        count = 0
        for tlen in range(self.order, self.min_order - 1, -1):
            chain = self.subchains[tlen]
            row = chain._row(chain.factory.total_index(self.factory.suffix(tail, tlen)))
            count += 1
            if row is not None:
                result += row[head_index] / row[-1]
                if self.strategy is Strategy.FIRST and result > 0:
                    count = 1
                    break
        return result / count if count > 0 else result

    def _trans_probs(self, tails, heads):
        f = self.factory
        return np.array([self.get_trans_p(f.from_total_index(t, self.order),
                                          f.from_total_index(h, self.dep_length))
                         for t, h in zip(tails.tolist(), heads.tolist())])

    def trans_matrix(self, observed, pos):
        return self._trans_matrix_generic(observed, pos)

    def repr(self):
        return super().repr() + \
            f"\nApproximation: {self.strategy.name.lower()}, min. order = {self.min_order}"

    def __repr__(self):
        return f"FallthruChain(order={self.order}, min_order={self.min_order}, " \
               f"strategy={self.strategy.name}, sequences={self.n_sequences})"
