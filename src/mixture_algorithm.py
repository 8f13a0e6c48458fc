import numpy as np

import config
from markov import MarkovChain
from viterbi import GeneViterbiAlgorithm


class BlendedChain(MarkovChain):
    """
    Read-only chain whose probabilities are the weighted geometric mean of the
    probabilities of the mixture components:

        log P(x) = sum_k w_k * max(log_floor, log P_k(x))
    """

    def __init__(self, mixture, weights, log_floor=config.MIXTURE_LOG_FLOOR):
        base = mixture.model(0)
        super().__init__(base.dep_length, base.order, base.states, dense_limit=0)
        self.mixture = mixture
        self.weights = np.asarray(weights, dtype=float)
        self.log_floor = log_floor

    def set_weights(self, weights):
        self.weights = np.asarray(weights, dtype=float)

    def _blend(self, probs):
        with np.errstate(divide="ignore"):
            logs = np.maximum(self.log_floor, np.log(probs))
        return np.exp(np.tensordot(self.weights, logs, axes=1))

    def get_initial_p(self, fragment):
        return float(self._blend(np.array([c.get_initial_p(fragment) for c in self.mixture.chains])))

    def get_trans_p(self, tail, head):
        return float(self._blend(np.array([c.get_trans_p(tail, head) for c in self.mixture.chains])))

    def initial_vector(self, observed):
        return self._blend(np.array([c.initial_vector(observed) for c in self.mixture.chains]))

    def trans_matrix(self, observed, pos):
        return self._blend(np.array([c.trans_matrix(observed, pos) for c in self.mixture.chains]))

    def train(self, observed, hidden, weight=1.0):
        raise NotImplementedError("Blended chains are not trainable")


class MixtureAlgorithm(GeneViterbiAlgorithm):
    """
    Decoder over a mixture of chains.

    For every component k the decoder starts from the responsibilities
    (0, ..., 1, ..., 0) and alternates Viterbi decoding under the blended
    chain with recomputing the responsibilities of the decoded sequence, until
    they change by less than the tolerance. The candidate with the highest
    mixture likelihood wins.
    """

    def __init__(self, mixture, validate_cds=False, max_rounds=config.MIXTURE_MAX_ROUNDS,
                 tolerance=config.MIXTURE_TOLERANCE, **kwargs):
        super().__init__(mixture.model(0), validate_cds, **kwargs)
        self.base_mixture = mixture
        self.current_mixture = None
        self.max_rounds = max_rounds
        self.tolerance = tolerance

    def train(self, seq):
        raise NotImplementedError("Mixture algorithm is trained on whole sets only")

    def train_set(self, dataset):
        self.current_mixture = self.base_mixture.duplicate_with_state()

    def reset(self):
        self.current_mixture = None

    def duplicate_hyperparameters_only(self):
        other = object.__new__(type(self))
        other.__dict__.update(self.__getstate__())
        other.current_mixture = None
        return other

    def run(self, observed):
        mixture = self.current_mixture
        if mixture is None:
            raise RuntimeError("Mixture algorithm is not trained")
        best, best_p = None, -np.inf
        for k in range(mixture.size()):
            weights = np.zeros(mixture.size())
            weights[k] = 1.0
            hidden = self.run_from(observed, weights)
            if hidden is None:
                continue
            log_p = mixture.estimate(observed, hidden)
            if log_p > best_p:
                best, best_p = hidden, log_p
        return best

    def run_from(self, observed, initial_weights):
        """Decodes starting from the given responsibilities."""
        mixture = self.current_mixture
        posteriors = np.asarray(initial_weights, dtype=float)
        hidden = None
        chain = BlendedChain(mixture, posteriors)
        for _ in range(self.max_rounds):
            chain.set_weights(posteriors)
            hidden = self.decode(observed, chain, self.codon_length)
            if hidden is None:
                return None
            previous = posteriors
            posteriors = mixture.posteriors(observed, hidden)
            if np.max(np.abs(posteriors - previous)) <= self.tolerance:
                break
        return hidden

    def repr(self):
        return super().repr() + "\nMixture: " + self.base_mixture.repr()
