import unittest
import numpy as np
import os
import pickle
import random
import sys
from unittest import mock

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '../src'))

from algorithm import JobListener, SeqAlgorithm
from env import Env
from fallthru import Approximation, Strategy
from markov import MarkovChain
from mixture import ChainMixture
from mixture_algorithm import BlendedChain, MixtureAlgorithm
from sequences import SequenceSet, encode
from simulator import generate_dataset
from states import gene_states
from threaded import ThreadedAlgorithm
from viterbi import FallthruAlgorithm, GeneViterbiAlgorithm, ViterbiAlgorithm


def small_genes(n, seed):
    return generate_dataset(n, random.Random(seed), exons=(1, 3), exon_codons=(4, 10),
                            intron_length=(10, 25))


def exon_only_set(states):
    dataset = SequenceSet(states)
    dataset.add(encode("ACGTACGT", states.observed), encode("xxxxxxxx", states.hidden))
    return dataset


class RecordingListener(JobListener):
    def __init__(self):
        self.indices = []
        self.finished_calls = 0

    def seq_completed(self, index, hidden):
        self.indices.append(index)

    def finished(self):
        self.finished_calls += 1


class FailingAlgorithm(SeqAlgorithm):
    """Labels everything as state 0 but fails on sequences starting with T."""

    def train(self, seq):
        pass

    def reset(self):
        pass

    def run(self, observed):
        if observed[0] == 3:
            raise RuntimeError("cannot decode")
        return np.zeros(len(observed), dtype=np.int8)


class TestViterbi(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = small_genes(15, seed=1)

    def test_untrained_refuses(self):
        algorithm = ViterbiAlgorithm.create(1, 6, self.states)
        for seq in self.dataset:
            self.assertIsNone(algorithm.run(seq.observed))
        self.assertIsNone(algorithm.run(self.dataset.observed(0)[:3]))

    def test_single_path(self):
        algorithm = ViterbiAlgorithm.create(1, 1, self.states)
        algorithm.train_set(exon_only_set(self.states))
        observed = encode("ACGTAC", self.states.observed)
        self.assertTrue(np.array_equal(algorithm.run(observed), np.zeros(6)))
        # no training sequence starts with T
        self.assertIsNone(algorithm.run(encode("TT", self.states.observed)))

    def test_decoding(self):
        algorithm = ViterbiAlgorithm.create(1, 3, self.states)
        algorithm.train_set(self.dataset)
        for seq in self.dataset:
            first = algorithm.run(seq.observed)
            self.assertIsNotNone(first)
            self.assertEqual(len(first), len(seq))
            self.assertTrue(set(first.tolist()) <= {0, 1})
            self.assertTrue(np.array_equal(first, algorithm.run(seq.observed)))

    def test_dependency_length(self):
        algorithm = ViterbiAlgorithm.create(2, 2, self.states)
        algorithm.train_set(self.dataset)
        for seq in self.dataset:
            result = algorithm.run(seq.observed)
            self.assertIsNotNone(result)
            self.assertEqual(len(result), len(seq))
            if (len(seq) - 2) % 2:
                self.assertEqual(result[-1], 0)

    def test_max_length(self):
        algorithm = ViterbiAlgorithm(MarkovChain(1, 1, self.states), max_seq_length=5)
        algorithm.train_set(exon_only_set(self.states))
        self.assertIsNone(algorithm.run(encode("ACGTAC", self.states.observed)))
        self.assertIsNotNone(algorithm.run(encode("ACGTA", self.states.observed)))

    def test_copies(self):
        algorithm = ViterbiAlgorithm.create(1, 2, self.states)
        algorithm.train_set(self.dataset)
        algorithm.run(self.dataset.observed(0))

        clear = algorithm.duplicate_hyperparameters_only()
        self.assertEqual(clear.chain.n_sequences, 0)
        self.assertEqual(algorithm.chain.n_sequences, len(self.dataset))

        restored = pickle.loads(pickle.dumps(algorithm))
        observed = self.dataset.observed(1)
        self.assertTrue(np.array_equal(restored.run(observed), algorithm.run(observed)))


class TestGeneViterbi(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = small_genes(20, seed=2)

    def test_coding_length(self):
        algorithm = GeneViterbiAlgorithm.create(3, self.states)
        algorithm.train_set(self.dataset)
        for seq in self.dataset:
            hidden = algorithm.run(seq.observed)
            # the reference labeling is feasible, so a result always exists
            self.assertIsNotNone(hidden)
            self.assertEqual(np.sum(hidden == 0) % 3, 0)

    def test_without_validation(self):
        algorithm = GeneViterbiAlgorithm.create(3, self.states, validate_cds=False)
        self.assertEqual(algorithm.codon_length, 1)
        plain = ViterbiAlgorithm.create(1, 3, self.states)
        algorithm.train_set(self.dataset)
        plain.train_set(self.dataset)
        for seq in self.dataset:
            self.assertTrue(np.array_equal(algorithm.run(seq.observed), plain.run(seq.observed)))

    def test_fallthru(self):
        algorithm = FallthruAlgorithm(Approximation(3, 1, Strategy.MEAN), self.states)
        algorithm.train_set(self.dataset)
        # unseen transitions are approximated, so unseen sequences still decode
        for seq in small_genes(5, seed=3):
            result = algorithm.run(seq.observed)
            self.assertIsNotNone(result)
            self.assertEqual(len(result), len(seq))


class TestThreadedAlgorithm(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = small_genes(25, seed=4)

    def test_matches_sequential(self):
        base = GeneViterbiAlgorithm.create(2, self.states)
        base.train_set(self.dataset)
        expected = base.run_set(self.dataset)

        listener = RecordingListener()
        with Env(3, verbosity=0) as env:
            estimates = ThreadedAlgorithm(base, env).run_set(self.dataset, listener)
        self.assertEqual(listener.indices, list(range(len(self.dataset))))
        self.assertEqual(listener.finished_calls, 1)
        for i in range(len(self.dataset)):
            self.assertTrue(np.array_equal(estimates.hidden(i), expected.hidden(i)))

    def test_worker_failure(self):
        dataset = SequenceSet(self.states)
        for text in ("ACGT", "TTGA", "GATT"):
            dataset.add(encode(text, self.states.observed), np.zeros(4, dtype=np.int8))

        listener = RecordingListener()
        with Env(2, verbosity=0) as env:
            estimates = ThreadedAlgorithm(FailingAlgorithm(), env).run_set(dataset, listener)
        self.assertEqual(len(env.errors), 1)
        self.assertIsInstance(env.errors[0], RuntimeError)
        self.assertEqual(listener.indices, [0, 2])
        self.assertIsNone(estimates.hidden(1))
        self.assertEqual(estimates.n_denied(), 1)

    def test_interrupted(self):
        env = Env(2, verbosity=0)
        env.interrupt()
        listener = RecordingListener()
        estimates = ThreadedAlgorithm(FailingAlgorithm(), env).run_set(self.dataset, listener)
        env.shutdown()
        self.assertEqual(listener.indices, [])
        self.assertEqual(estimates.n_denied(), len(self.dataset))

    def test_pickle_drops_env(self):
        algorithm = ThreadedAlgorithm(GeneViterbiAlgorithm.create(2, self.states), Env(2))
        restored = pickle.loads(pickle.dumps(algorithm))
        self.assertIsNone(restored.env)
        self.assertEqual(restored.base.order, 2)


class TestMixtureAlgorithm(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()

    def test_single_path(self):
        chain = MarkovChain(1, 1, self.states)
        chain.train_set(exon_only_set(self.states))
        algorithm = MixtureAlgorithm(ChainMixture(chains=[chain]))
        with self.assertRaises(RuntimeError):
            algorithm.run(encode("ACGT", self.states.observed))

        algorithm.train_set(exon_only_set(self.states))
        result = algorithm.run(encode("ACGTAC", self.states.observed))
        self.assertTrue(np.array_equal(result, np.zeros(6)))

    def test_two_components(self):
        dataset = small_genes(20, seed=5)
        mixture = ChainMixture(2, 2, self.states)
        mixture.random_fill(dataset, np.random.default_rng(0))
        algorithm = MixtureAlgorithm(mixture)
        algorithm.train_set(dataset)
        for seq in dataset:
            result = algorithm.run(seq.observed)
            if result is not None:
                self.assertEqual(len(result), len(seq))
                self.assertTrue(set(result.tolist()) <= {0, 1})

        clear = algorithm.duplicate_hyperparameters_only()
        self.assertIsNone(clear.current_mixture)
        self.assertIs(clear.base_mixture, algorithm.base_mixture)

    def test_one_blended_chain_per_start(self):
        dataset = small_genes(20, seed=5)
        mixture = ChainMixture(2, 2, self.states)
        mixture.random_fill(dataset, np.random.default_rng(0))
        # a negative tolerance runs every refinement round
        algorithm = MixtureAlgorithm(mixture, max_rounds=4, tolerance=-1.0)
        algorithm.train_set(dataset)
        with mock.patch("mixture_algorithm.BlendedChain", wraps=BlendedChain) as factory:
            algorithm.run_from(dataset.observed(0), [1.0, 0.0])
        self.assertEqual(factory.call_count, 1)

    def test_blended_weights(self):
        chains = []
        for hidden in ("xxxxxxxx", "iiiiiiii"):
            dataset = SequenceSet(self.states)
            dataset.add(encode("ACGTACGT", self.states.observed), encode(hidden, self.states.hidden))
            chain = MarkovChain(1, 0, self.states)
            chain.train_set(dataset)
            chains.append(chain)
        blended = BlendedChain(ChainMixture(chains=chains), [1.0, 0.0])
        tail, head = blended.factory.make(0, 0, 0), blended.factory.make(0, 0, 1)
        self.assertAlmostEqual(blended.get_trans_p(tail, head), chains[0].get_trans_p(tail, head))
        blended.set_weights([0.0, 1.0])
        self.assertAlmostEqual(blended.get_trans_p(tail, head), chains[1].get_trans_p(tail, head))


if __name__ == '__main__':
    unittest.main()
