"""
Weighted mixtures of probabilistic models and the posterior (responsibility)
computation used by the EM algorithm.
"""
import copy

import numpy as np

import config
from env import default_env
from markov import MarkovChain


class Mixture:
    """
    Finite mixture of models that provide estimate(*sample) -> log-likelihood.

    Weights are non-negative and sum to one after every operation.
    """

    def __init__(self, models=None, weights=None):
        self._models = list(models) if models is not None else []
        if weights is None:
            n = len(self._models)
            self._weights = np.full(n, 1.0 / n) if n else np.zeros(0)
        else:
            self._weights = np.zeros(len(self._models))
            self.set_weights(weights)

    def size(self):
        return len(self._models)

    def __len__(self):
        return len(self._models)

    def model(self, index):
        return self._models[index]

    @property
    def models(self):
        return list(self._models)

    def weight(self, index):
        return float(self._weights[index])

    @property
    def weights(self):
        return self._weights.copy()

    def set_weights(self, weights):
        weights = np.asarray(weights, dtype=float)
        if len(weights) != self.size():
            raise ValueError(f"Wrong number of weights: {len(weights)}, expected {self.size()}")
        if np.any(weights < 0):
            raise ValueError(f"Negative weight: {weights.min()}")
        total = weights.sum()
        if total == 0.0:
            raise ValueError("At least one weight must be positive")
        self._weights = weights / total

    def add(self, model, weight):
        """Appends a model with the given weight; other weights are scaled by (1 - weight)."""
        if weight < 0.0:
            raise ValueError(f"Negative weight: {weight}")
        if weight > 1.0:
            raise ValueError(f"Weight exceeds 1.0: {weight}")
        if not self._models:
            weight = 1.0
        self._models.append(model)
        self._weights = np.append(self._weights * (1.0 - weight), weight)

    def delete(self, index):
        del self._models[index]
        weights = np.delete(self._weights, index)
        total = weights.sum()
        if len(weights) and total > 0:
            weights /= total
        elif len(weights):
            weights[:] = 1.0 / len(weights)
        self._weights = weights

    def _log_terms(self, sample):
        with np.errstate(divide="ignore"):
            log_w = np.log(self._weights)
        return np.array([m.estimate(*sample) for m in self._models]) + log_w

    def posteriors(self, *sample):
        """Posterior probabilities of the components given a sample."""
        p = self._log_terms(sample)
        p = np.exp(p - p.max())
        return p / p.sum()

    def estimate(self, *sample):
        p = self._log_terms(sample)
        max_p = p.max()
        return float(max_p + np.log(np.sum(np.exp(p - max_p))))

    def train(self, *sample):
        raise NotImplementedError("Use EM algorithm")

    def reset(self):
        for model in self._models:
            model.reset()

    def duplicate_with_state(self):
        return copy.deepcopy(self)

    def duplicate_hyperparameters_only(self):
        other = copy.copy(self)
        other._models = [m.duplicate_hyperparameters_only() for m in self._models]
        other._weights = self._weights.copy()
        return other

    clear_clone = duplicate_hyperparameters_only


class MarkovMixture(Mixture):
    """Mixture of Markov chains over labeled sequences."""

    @classmethod
    def create(cls, size, order, states, dep_length=1):
        return cls([MarkovChain(dep_length, order, states) for _ in range(size)])

    @property
    def chains(self):
        return self.models

    def random_fill(self, dataset, rng=None):
        """
        Trains every chain on a random share of the set; weights become the
        fractions of sequences each chain received.
        """
        rng = rng if rng is not None else np.random.default_rng()
        self.reset()
        counts = np.zeros(self.size())
        for seq in dataset:
            idx = int(rng.integers(self.size()))
            self._models[idx].train(seq.observed, seq.hidden)
            counts[idx] += 1
        self.set_weights(counts)

    def get_weights(self, dataset, env=None):
        """Responsibility table (components x sequences)."""
        return MixtureWeights(self, dataset).run(env).weights

    @staticmethod
    def alignments(weights, threshold):
        return [int(np.sum(row > threshold)) for row in weights]

    @staticmethod
    def alignments_repr(weights):
        lines = []
        for threshold in config.ALIGNMENT_THRESHOLDS:
            lines.append(f"Sequences with responsibility > {threshold}: "
                         f"{MarkovMixture.alignments(weights, threshold)}")
        return "\n".join(lines)

    def repr(self):
        lines = [f"Number of models: {self.size()}"]
        if self.size() > 0:
            lines.append("Weights: " + np.array2string(self._weights, precision=4, separator=", "))
            lines.append("Chain: " + self._models[0].repr())
        return "\n".join(lines)

    def __repr__(self):
        return f"{type(self).__name__}([{self.size()} models])"


class ChainMixture(MarkovMixture):
    """Mixture of count first-dependency chains of the same order with equal weights."""

    def __init__(self, count=0, order=1, states=None, chains=None, weights=None):
        if chains is None:
            chains = [MarkovChain(1, order, states) for _ in range(count)]
        super().__init__(chains, weights)


class MixtureWeights:
    """
    Expectation step: posterior responsibility of every component for every
    sequence of a set, computed in parallel, plus the hard assignment
    labels = {sequence id: most responsible component}.
    """

    # exp() argument cap when comparing component likelihoods
    MAX_EXPONENT = 50.0

    def __init__(self, mixture, dataset):
        self.mixture = mixture
        self.dataset = dataset
        self.weights = np.zeros((mixture.size(), len(dataset)))
        self.labels = {}

    def _responsibilities(self, index):
        seq = self.dataset.get(index)
        log_p = np.array([chain.estimate(seq.observed, seq.hidden)
                          for chain in self.mixture.chains])
        w = self.mixture.weights
        result = np.zeros(len(log_p))
        for k in range(len(log_p)):
            diff = log_p - log_p[k]
            terms = np.exp(np.minimum(diff, self.MAX_EXPONENT)) * w
            with np.errstate(invalid="ignore", divide="ignore"):
                result[k] = terms[k] / terms.sum()
            if np.isnan(result[k]):
                raise ValueError("Invalid mixture (not trained?)")
        self.weights[:, index] = result

    def run(self, env=None):
        env = env if env is not None else default_env()
        executor = env.executor()
        futures = [executor.submit(self._responsibilities, i) for i in range(len(self.dataset))]
        for future in futures:
            try:
                future.result()
            except Exception as e:
                env.exception(e)

        self.labels = {}
        for i in range(len(self.dataset)):
            self.labels[self.dataset.id(i)] = int(np.argmax(self.weights[:, i]))
        return self
