import unittest
import numpy as np
import os
import random
import sys

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '../src'))

import snapshot
from env import Env
from sequences import decode, encode
from simulator import generate_dataset
from states import StatesDescription, gene_states
from threaded import ThreadedAlgorithm
from transforms import (GENE_TRANSFORM, GeneTransformAlgorithm, PeriodicTransform, TerminalTransform,
                        TransformComposition)


def small_genes(n, seed):
    return generate_dataset(n, random.Random(seed), exons=(1, 3), exon_codons=(4, 10),
                            intron_length=(10, 25))


class TestPeriodicTransform(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.transform = PeriodicTransform()

    def periodic_labels(self, labels):
        observed = encode("A" * len(labels), self.states.observed)
        _, hidden = self.transform.sequence(observed, encode(labels, self.states.hidden), self.states)
        return decode(hidden, self.transform.states(self.states).hidden)

    def test_phases(self):
        self.assertEqual(self.periodic_labels("xxxiixxx"), "xyziixyz")
        # an intron inside a codon keeps the phase of the next exon symbol
        self.assertEqual(self.periodic_labels("xxiixx"), "xykkzx")
        self.assertEqual(self.periodic_labels("iix"), "iix")

    def test_states(self):
        states = self.transform.states(self.states)
        self.assertEqual(states.observed, "ACGT")
        self.assertEqual(states.hidden, "xyzijk")
        with self.assertRaises(ValueError):
            self.transform.states(StatesDescription.create("ACGT", "ab"))

    def test_inverse(self):
        hidden = encode("xykkzx", "xyzijk")
        _, original = self.transform.inverse(None, hidden, self.states)
        self.assertEqual(decode(original, "xi"), "xxiixx")


class TestTerminalTransform(unittest.TestCase):
    def test_sequence(self):
        states = gene_states()
        transform = TerminalTransform()
        observed, hidden = transform.sequence(encode("ACG", "ACGT"), encode("xix", "xi"), states)
        self.assertEqual(observed.tolist(), [0, 1, 2, 4])
        self.assertEqual(hidden.tolist(), [0, 1, 0, 0])
        self.assertEqual(transform.observed(encode("ACG", "ACGT"), states).tolist(), [0, 1, 2, 4])

        observed, hidden = transform.inverse(observed, hidden, states)
        self.assertEqual(observed.tolist(), [0, 1, 2])
        self.assertEqual(hidden.tolist(), [0, 1, 0])

    def test_states(self):
        states = TerminalTransform().states(gene_states())
        self.assertEqual(states.observed, "ACGT$")
        self.assertEqual(states.complete, "ACGT$acgt$")
        no_complete = TerminalTransform().states(StatesDescription.create("AB", "xi"))
        self.assertIsNone(no_complete.complete)


class TestComposition(unittest.TestCase):
    def test_gene_transform(self):
        states = gene_states()
        self.assertEqual(GENE_TRANSFORM.states(states), StatesDescription.create("ACGT$", "xyzijk"))

        observed = encode("ATGGTAAGCC", "ACGT")
        hidden = encode("xxiiiiiixx", "xi")
        t_observed, t_hidden = GENE_TRANSFORM.sequence(observed, hidden, states)
        self.assertEqual(decode(t_observed, "ACGT$"), "ATGGTAAGCC$")
        self.assertEqual(decode(t_hidden, "xyzijk"), "xykkkkkkzxx")
        self.assertEqual(GENE_TRANSFORM.observed(observed, states).tolist(), t_observed.tolist())

        back_observed, back_hidden = GENE_TRANSFORM.inverse(t_observed, t_hidden, states)
        self.assertEqual(back_observed.tolist(), observed.tolist())
        self.assertEqual(back_hidden.tolist(), hidden.tolist())

    def test_order(self):
        # the terminal symbol is added after the phases are assigned
        reversed_order = TransformComposition(TerminalTransform(), PeriodicTransform())
        _, hidden = reversed_order.sequence(encode("AC", "ACGT"), encode("xx", "xi"), gene_states())
        self.assertEqual(decode(hidden, "xyzijk"), "xyz")


class TestGeneTransformAlgorithm(unittest.TestCase):
    def setUp(self):
        self.states = gene_states()
        self.dataset = small_genes(20, seed=3)
        self.algorithm = GeneTransformAlgorithm.create(2, self.states)
        self.algorithm.train_set(self.dataset)

    def test_training_set(self):
        self.assertEqual(self.algorithm.base.chain.n_sequences, len(self.dataset))
        self.assertEqual(self.algorithm.base.chain.states, GENE_TRANSFORM.states(self.states))
        for seq in self.dataset:
            result = self.algorithm.run(seq.observed)
            # the training labeling itself is a path of positive probability
            self.assertIsNotNone(result)
            self.assertEqual(len(result), len(seq))
            self.assertTrue(set(result.tolist()) <= {0, 1})
            self.assertEqual(int(np.sum(result == 0)) % 3, 0)

    def test_threaded(self):
        control = small_genes(6, seed=4)
        with Env(2, verbosity=0) as env:
            estimates = ThreadedAlgorithm(self.algorithm, env).run_set(control)
        for i, seq in enumerate(control):
            expected = self.algorithm.run(seq.observed)
            if expected is None:
                self.assertIsNone(estimates.hidden(i))
            else:
                self.assertEqual(estimates.hidden(i).tolist(), expected.tolist())

    def test_clear_copy_and_snapshot(self):
        clear = self.algorithm.duplicate_hyperparameters_only()
        self.assertEqual(clear.base.chain.n_sequences, 0)
        self.assertEqual(self.algorithm.base.chain.n_sequences, len(self.dataset))

        restored = snapshot.loads(snapshot.dumps(self.algorithm))
        seq = self.dataset[0]
        self.assertEqual(restored.run(seq.observed).tolist(), self.algorithm.run(seq.observed).tolist())

    def test_wrong_states(self):
        other = small_genes(2, seed=5)
        other.states = StatesDescription.create("ACGT", "xi")
        with self.assertRaises(ValueError):
            self.algorithm.train_set(other)


if __name__ == '__main__':
    unittest.main()
