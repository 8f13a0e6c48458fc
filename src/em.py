"""
Expectation-maximization training of Markov chain mixtures.

    EMAlgorithm             - fixed number of EM rounds for a mixture of a given size;
    IncrementalEMAlgorithm  - grows the mixture by training a new chain on the
                              sequences the current mixture explains worst;
    DecrementalEMAlgorithm  - shrinks the mixture by removing the lightest chain.

All three are resumable jobs: the current round is part of the saved state.
"""
from bisect import bisect_left
from enum import Enum

import numpy as np

import config
import snapshot
from evaluation import Launchable
from mixture import MarkovMixture, MixtureWeights


class SelectionMethod(Enum):
    """Threshold used to pick the worst explained sequences."""
    FIXED = "fixed"
    MEDIAN = "median"
    MEAN = "mean"


class EMAlgorithm(Launchable):

    def __init__(self, mixture=None, dataset=None, n_iterations=config.EM_ITERATIONS,
                 stochastic=False, save_template=None, rng=None):
        super().__init__()
        self.mixture = mixture
        self.dataset = dataset
        self.n_iterations = n_iterations
        self.stochastic = stochastic
        self.save_template = save_template
        self.rng = rng if rng is not None else np.random.default_rng()
        self.iteration = 0

    def _sample_weights(self, responsibilities):
        if self.stochastic:
            # Bernoulli draws turn soft responsibilities into a hard 0/1 assignment
            return (self.rng.random(len(responsibilities)) < responsibilities).astype(float)
        return responsibilities.copy()

    def ordinary_run(self):
        """Runs the remaining EM rounds for the current mixture."""
        env = self.get_env()
        executor = env.executor()

        for t in range(self.iteration, self.n_iterations):
            env.debug(1, f"\n[EM] Expectation step {t + 1}")
            weights = MixtureWeights(self.mixture, self.dataset).run(env).weights
            env.debug(1, MarkovMixture.alignments_repr(weights))

            env.debug(1, f"[EM] Maximization step {t + 1}")
            new_mixture = self.mixture.duplicate_hyperparameters_only()
            new_mixture.set_weights(weights.sum(axis=1))
            samples = [self._sample_weights(weights[k]) for k in range(new_mixture.size())]
            futures = [executor.submit(new_mixture.model(k).train_set, self.dataset, samples[k])
                       for k in range(new_mixture.size())]
            for future in futures:
                try:
                    future.result()
                except Exception as e:
                    env.exception(e)

            self.mixture = new_mixture
            env.debug(1, self.mixture.repr())
            self.save_mixture(t + 1)
            self.iteration = t + 1
            self.save()

    def save_mixture(self, iteration):
        if self.save_template is None:
            return None
        filename = self.save_template.replace("{n}", str(self.mixture.size())) \
            .replace("{i}", str(iteration))
        self.get_env().debug(2, f"[EM] Saving mixture to {filename}")
        try:
            snapshot.save_object(self.mixture, filename)
        except snapshot.SnapshotError as e:
            self.get_env().error(0, f"[EM] Error saving mixture: {e}")
            return None
        return filename

    def reset_iteration(self):
        self.iteration = 0

    def log_likelihood(self):
        """Total log-likelihood of the set under the current mixture."""
        return float(sum(self.mixture.estimate(seq.observed, seq.hidden) for seq in self.dataset))

    def do_run(self):
        self.get_env().debug(1, self.repr())
        self.ordinary_run()

    def repr_options(self):
        return "\n".join([f"Stochastic: {self.stochastic}",
                          f"Iterations: {self.n_iterations}",
                          f"Save template: {self.save_template}"])

    def repr(self):
        text = self.repr_options()
        if self.mixture is not None:
            text += "\nMixture: " + self.mixture.repr()
        return text


class IncrementalEMAlgorithm(EMAlgorithm):
    """
    Adds components one at a time until the mixture has max_models chains,
    running ordinary EM after each addition.

    A new chain is trained on the sequences whose score falls below a threshold.
    The score is the best per-length log-likelihood among the chains, or the
    largest responsibility if select_weights is set. The threshold is 0, the
    median or the mean score (selection_method) plus value_offset; the number
    of selected sequences is then shifted by index_offset.
    """

    def __init__(self, *args, selection_method=SelectionMethod.MEAN, select_weights=False,
                 index_offset=0, value_offset=0.0, max_models=3, **kwargs):
        super().__init__(*args, **kwargs)
        self.selection_method = SelectionMethod(selection_method)
        self.select_weights = select_weights
        self.index_offset = index_offset
        self.value_offset = value_offset
        self.max_models = max_models

    def _scores(self):
        if self.select_weights:
            return self.mixture.get_weights(self.dataset, self.get_env()).max(axis=0)
        scores = np.empty(len(self.dataset))
        for i, seq in enumerate(self.dataset):
            best = max(chain.estimate(seq.observed, seq.hidden) for chain in self.mixture.chains)
            scores[i] = best / max(len(seq), 1)
        return scores

    def worst_samples(self):
        """Indices of the sequences the current mixture explains worst, worst first."""
        env = self.get_env()
        env.debug(1, "[EM] Searching for badly explained sequences")
        n = len(self.dataset)
        if n == 0:
            return []
        scores = self._scores()
        order = np.argsort(scores, kind="stable")
        ranked = scores[order].tolist()

        if self.selection_method is SelectionMethod.MEDIAN:
            threshold = ranked[n // 2]
        elif self.selection_method is SelectionMethod.MEAN:
            threshold = float(np.mean(ranked))
        else:
            threshold = 0.0
        count = bisect_left(ranked, threshold + self.value_offset) + self.index_offset
        count = min(max(count, 0), n)
        env.debug(1, f"[EM] Found {count} sequences")
        return order[:count].tolist()

    def incremental_run(self):
        while self.mixture.size() <= self.max_models:
            if self.mixture.size() > 1:
                self.ordinary_run()
            self.reset_iteration()
            if self.mixture.size() == self.max_models:
                break

            indices = self.worst_samples()
            chain = self.mixture.model(0).duplicate_hyperparameters_only()
            for i in indices:
                chain.train(self.dataset.observed(i), self.dataset.hidden(i))
            weight = len(indices) / len(self.dataset)
            self.get_env().debug(1, f"[EM] Adding a chain trained on {len(indices)} sequences, "
                                    f"weight {weight:.4f}")
            self.mixture.add(chain, weight)

    def do_run(self):
        self.get_env().debug(1, self.repr())
        self.incremental_run()

    def repr_options(self):
        return super().repr_options() + "\n" + "\n".join([
            f"Selection method: {self.selection_method.name}, by weights: {self.select_weights}",
            f"Offsets: index {self.index_offset}, value {self.value_offset}",
            f"Max. models: {self.max_models}"])


class DecrementalEMAlgorithm(EMAlgorithm):
    """Removes the lightest component after each EM run until min_models remain."""

    def __init__(self, *args, min_models=3, **kwargs):
        super().__init__(*args, **kwargs)
        self.min_models = min_models

    def decremental_run(self):
        while self.mixture.size() >= self.min_models:
            self.ordinary_run()
            self.reset_iteration()
            if self.mixture.size() == self.min_models:
                break

            weights = self.mixture.weights
            lightest = int(np.argmin(weights))
            self.get_env().debug(1, f"[EM] Removing chain {lightest + 1} "
                                    f"with weight {weights[lightest]:.4f}")
            self.mixture.delete(lightest)
            self.save_mixture(0)
            self.save()

    def do_run(self):
        self.get_env().debug(1, self.repr())
        self.decremental_run()

    def repr_options(self):
        return super().repr_options() + f"\nMin. models: {self.min_models}"
