import unittest
import numpy as np
import os
import sys
import tempfile

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '../src'))

import snapshot
from em import DecrementalEMAlgorithm, EMAlgorithm, IncrementalEMAlgorithm, SelectionMethod
from env import Env
from markov import MarkovChain
from mixture import ChainMixture, MarkovMixture, Mixture, MixtureWeights
from sequences import SequenceSet, encode
from states import gene_states


class ConstantModel:
    def __init__(self, log_p):
        self.log_p = log_p

    def estimate(self, *sample):
        return self.log_p

    def reset(self):
        pass

    def duplicate_hyperparameters_only(self):
        return ConstantModel(self.log_p)


def two_cluster_set(states):
    """Exon-rich and intron-rich sequences; every sequence uses the same four complete states."""
    dataset = SequenceSet(states)
    rows = [("AAAAAAAACCCCCCCCGGTT", "x" * 16 + "i" * 4, "a1"),
            ("AAAAAAACCCCCCCCCGGTT", "x" * 16 + "i" * 4, "a2"),
            ("AACCGGGGGGGGTTTTTTTT", "x" * 4 + "i" * 16, "b1"),
            ("AACCCGGGGGGGTTTTTTTT", "x" * 5 + "i" * 15, "b2")]
    for observed, hidden, name in rows:
        dataset.add(encode(observed, states.observed), encode(hidden, states.hidden), name)
    return dataset


def seeded_mixture(dataset, share_weights):
    """Order 0 chains, each trained on the whole set with its own sequence weights."""
    chains = []
    for weights in share_weights:
        chain = MarkovChain(1, 0, dataset.states)
        chain.train_set(dataset, weights)
        chains.append(chain)
    return ChainMixture(chains=chains)


class TestMixture(unittest.TestCase):
    def test_add_delete(self):
        mixture = Mixture()
        mixture.add(ConstantModel(0.0), 0.3)
        self.assertTrue(np.allclose(mixture.weights, [1.0]))
        mixture.add(ConstantModel(0.0), 0.25)
        self.assertTrue(np.allclose(mixture.weights, [0.75, 0.25]))
        mixture.add(ConstantModel(0.0), 0.5)
        self.assertTrue(np.allclose(mixture.weights, [0.375, 0.125, 0.5]))
        mixture.delete(2)
        self.assertTrue(np.allclose(mixture.weights, [0.75, 0.25]))
        self.assertAlmostEqual(mixture.weights.sum(), 1.0)

        with self.assertRaises(ValueError):
            mixture.add(ConstantModel(0.0), 1.5)
        with self.assertRaises(ValueError):
            mixture.add(ConstantModel(0.0), -0.1)
        self.assertEqual(mixture.size(), 2)

    def test_delete_last_weighted(self):
        mixture = Mixture([ConstantModel(0.0), ConstantModel(0.0), ConstantModel(0.0)], [1.0, 0.0, 0.0])
        mixture.delete(0)
        self.assertTrue(np.allclose(mixture.weights, [0.5, 0.5]))

    def test_set_weights(self):
        mixture = Mixture([ConstantModel(0.0), ConstantModel(0.0)])
        self.assertTrue(np.allclose(mixture.weights, [0.5, 0.5]))
        mixture.set_weights([3, 1])
        self.assertTrue(np.allclose(mixture.weights, [0.75, 0.25]))
        for bad in ([1.0], [-1.0, 2.0], [0.0, 0.0]):
            with self.assertRaises(ValueError):
                mixture.set_weights(bad)

    def test_posteriors(self):
        mixture = Mixture([ConstantModel(np.log(0.2)), ConstantModel(np.log(0.6))])
        self.assertTrue(np.allclose(mixture.posteriors("sample"), [0.25, 0.75]))
        self.assertAlmostEqual(mixture.estimate("sample"), np.log(0.4))
        with self.assertRaises(NotImplementedError):
            mixture.train("sample")

    def test_alignments(self):
        weights = np.array([[0.99, 0.2], [0.01, 0.8]])
        self.assertEqual(MarkovMixture.alignments(weights, 0.5), [1, 1])
        self.assertEqual(MarkovMixture.alignments(weights, 0.9), [1, 0])


class TestMixtureWeights(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = two_cluster_set(self.states)
        self.env = Env(2, verbosity=0)

    def tearDown(self):
        self.env.shutdown()

    def test_responsibilities(self):
        mixture = seeded_mixture(self.dataset, [[0.9, 0.9, 0.1, 0.1], [0.1, 0.1, 0.9, 0.9]])
        e_step = MixtureWeights(mixture, self.dataset).run(self.env)
        self.assertTrue(np.allclose(e_step.weights.sum(axis=0), 1.0))
        self.assertEqual(e_step.labels, {"a1": 0, "a2": 0, "b1": 1, "b2": 1})

    def test_invalid_mixture(self):
        mixture = ChainMixture(chains=[ConstantModel(float("nan")), ConstantModel(0.0)])
        MixtureWeights(mixture, self.dataset).run(self.env)
        self.assertTrue(self.env.errors)
        self.assertIsInstance(self.env.errors[0], ValueError)


class TestEM(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = two_cluster_set(self.states)
        self.env = Env(2, verbosity=0)

    def tearDown(self):
        self.env.shutdown()

    def test_monotonic(self):
        mixture = seeded_mixture(self.dataset, [[0.7, 0.7, 0.3, 0.3], [0.3, 0.3, 0.7, 0.7]])
        job = EMAlgorithm(mixture, self.dataset, n_iterations=0, rng=np.random.default_rng(0))
        history = [job.log_likelihood()]
        for n in range(1, 4):
            job.n_iterations = n
            job.run(self.env)
            self.assertEqual(job.iteration, n)
            history.append(job.log_likelihood())
        for before, after in zip(history, history[1:]):
            self.assertGreaterEqual(after, before - 1e-9)
        self.assertGreater(history[-1], history[0])
        labels = MixtureWeights(job.mixture, self.dataset).run(self.env).labels
        self.assertEqual(labels["a1"], labels["a2"])
        self.assertEqual(labels["b1"], labels["b2"])
        self.assertNotEqual(labels["a1"], labels["b1"])

    def test_stochastic(self):
        mixture = seeded_mixture(self.dataset, [[0.7, 0.7, 0.3, 0.3], [0.3, 0.3, 0.7, 0.7]])
        job = EMAlgorithm(mixture, self.dataset, n_iterations=2, stochastic=True,
                          rng=np.random.default_rng(1))
        job.run(self.env)
        self.assertEqual(job.mixture.size(), 2)
        self.assertAlmostEqual(job.mixture.weights.sum(), 1.0)

    def test_mixture_files_and_resume(self):
        mixture = seeded_mixture(self.dataset, [[0.7, 0.7, 0.3, 0.3], [0.3, 0.3, 0.7, 0.7]])
        with tempfile.TemporaryDirectory() as tmp:
            template = os.path.join(tmp, "mix-{n}-{i}.gz")
            job = EMAlgorithm(mixture, self.dataset, n_iterations=2, save_template=template)
            job.set_save_file(os.path.join(tmp, "em.gz"))
            job.run(self.env)

            self.assertTrue(os.path.exists(os.path.join(tmp, "mix-2-1.gz")))
            saved = snapshot.load_object(os.path.join(tmp, "mix-2-2.gz"))
            self.assertEqual(saved.size(), 2)

            loaded = snapshot.load_object(os.path.join(tmp, "em.gz"))
            self.assertEqual(loaded.iteration, 2)
            self.assertIsNone(loaded.env)
            before = loaded.log_likelihood()
            loaded.run(self.env)
            self.assertEqual(loaded.iteration, 2)
            self.assertAlmostEqual(loaded.log_likelihood(), before)

    def test_incremental(self):
        mixture = seeded_mixture(self.dataset, [None])
        job = IncrementalEMAlgorithm(mixture, self.dataset, n_iterations=2, max_models=3,
                                     rng=np.random.default_rng(2))
        job.run(self.env)
        self.assertEqual(job.mixture.size(), 3)
        self.assertAlmostEqual(job.mixture.weights.sum(), 1.0)
        self.assertTrue(np.all(job.mixture.weights >= 0))

    def test_decremental(self):
        mixture = seeded_mixture(self.dataset, [[0.7, 0.7, 0.3, 0.3], [0.3, 0.3, 0.7, 0.7],
                                                [0.5, 0.5, 0.5, 0.5]])
        job = DecrementalEMAlgorithm(mixture, self.dataset, n_iterations=1, min_models=1,
                                     rng=np.random.default_rng(3))
        job.run(self.env)
        self.assertEqual(job.mixture.size(), 1)
        self.assertTrue(np.allclose(job.mixture.weights, [1.0]))


class TestWorstSamples(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = two_cluster_set(self.states)

    def job(self, dataset=None, **kwargs):
        dataset = self.dataset if dataset is None else dataset
        job = IncrementalEMAlgorithm(seeded_mixture(self.dataset, [None]), dataset, **kwargs)
        job.env = Env(1, verbosity=0)
        return job

    def test_empty_set(self):
        self.assertEqual(self.job(SequenceSet(self.states)).worst_samples(), [])

    def test_offsets(self):
        self.assertEqual(sorted(self.job(value_offset=1e9).worst_samples()), [0, 1, 2, 3])
        self.assertEqual(self.job(value_offset=-1e9).worst_samples(), [])
        self.assertEqual(len(self.job(index_offset=10).worst_samples()), 4)
        self.assertEqual(self.job(index_offset=-10).worst_samples(), [])

    def test_selection_methods(self):
        # per-symbol log-likelihoods are negative, so all of them fall below 0
        fixed = self.job(selection_method=SelectionMethod.FIXED).worst_samples()
        self.assertEqual(len(fixed), 4)
        median = self.job(selection_method=SelectionMethod.MEDIAN).worst_samples()
        self.assertLessEqual(len(median), 2)
        mean = self.job(selection_method=SelectionMethod.MEAN).worst_samples()
        self.assertGreaterEqual(len(mean), 1)

    def test_worst_first(self):
        job = self.job(value_offset=1e9)
        chain = job.mixture.model(0)
        scores = [chain.estimate(seq.observed, seq.hidden) / len(seq) for seq in self.dataset]
        ranked = [scores[i] for i in job.worst_samples()]
        self.assertEqual(ranked, sorted(ranked))

    def test_by_weights(self):
        # a single component is fully responsible for every sequence
        job = self.job(select_weights=True)
        self.assertEqual(job.worst_samples(), [])
        job.env.shutdown()


if __name__ == '__main__':
    unittest.main()
