"""
Sequence transforms and decoders that work on transformed sequences.

A transform rewrites the alphabets of a set and every labeled sequence in it.
TransformAlgorithm trains its base decoder on transformed sequences; to decode,
it transforms the observed sequence, runs the base decoder and maps the result
back with the inverse transform.
"""
import numpy as np

from algorithm import SeqAlgorithm
from sequences import Sequence
from states import StatesDescription
from viterbi import ViterbiAlgorithm

# Hidden alphabet produced by PeriodicTransform: exon and intron states by codon phase
PERIODIC_HIDDEN = "xyzijk"
TERMINAL_SYMBOL = "$"


class Transform:
    """
    Interface of a transform. Every method receives the states of its input:

    - states(states): alphabets of the transformed set;
    - sequence(observed, hidden, states): a labeled sequence, for training;
    - observed(observed, states): an observed sequence about to be decoded;
    - inverse(observed, hidden, states): maps a transformed pair back, where
      states are the original (untransformed) ones.
    """

    def states(self, states):
        raise NotImplementedError

    def sequence(self, observed, hidden, states):
        raise NotImplementedError

    def observed(self, observed, states):
        raise NotImplementedError

    def inverse(self, observed, hidden, states):
        raise NotImplementedError

    def repr(self):
        return type(self).__name__


class PeriodicTransform(Transform):
    """
    Splits exon/intron labels by codon phase: hidden state h becomes 3 * h + phase,
    the phase being the number of exon symbols before the position modulo 3.
    """

    def states(self, states):
        if states.hidden != "xi":
            raise ValueError(f"Periodic transform is defined for genes only, "
                             f"got hidden states {states.hidden!r}")
        return StatesDescription.create(states.observed, PERIODIC_HIDDEN)

    def sequence(self, observed, hidden, states):
        hidden = np.asarray(hidden, dtype=np.int64)
        coding = (hidden == 0).astype(np.int64)
        phase = (np.cumsum(coding) - coding) % 3
        return observed, (hidden * 3 + phase).astype(np.int8)

    def observed(self, observed, states):
        return observed

    def inverse(self, observed, hidden, states):
        return observed, (np.asarray(hidden) // 3).astype(np.int8)

    def repr(self):
        return "Periodic transform (hidden states by codon phase)"


class TerminalTransform(Transform):
    """Appends a terminal observed symbol '$', labeled with hidden state 0."""

    @staticmethod
    def _insert_terminals(complete, n_pieces):
        if complete is None:
            return None
        piece = len(complete) // n_pieces
        return "".join(complete[pos:pos + piece] + TERMINAL_SYMBOL
                       for pos in range(0, len(complete), piece))

    def states(self, states):
        return StatesDescription.create(states.observed + TERMINAL_SYMBOL, states.hidden,
                                        self._insert_terminals(states.complete, states.n_hidden))

    def sequence(self, observed, hidden, states):
        return self.observed(observed, states), np.append(hidden, 0).astype(np.int8)

    def observed(self, observed, states):
        return np.append(observed, states.n_observed).astype(np.int8)

    def inverse(self, observed, hidden, states):
        return observed[:-1], hidden[:-1]

    def repr(self):
        return "Terminal transform"


class TransformComposition(Transform):
    """Applies transforms left to right; the inverse goes right to left."""

    def __init__(self, *transforms):
        self.transforms = transforms

    def _chain_states(self, states):
        """States seen by every transform, the result of the last one included."""
        chain = [states]
        for t in self.transforms:
            chain.append(t.states(chain[-1]))
        return chain

    def states(self, states):
        return self._chain_states(states)[-1]

    def sequence(self, observed, hidden, states):
        for t in self.transforms:
            observed, hidden = t.sequence(observed, hidden, states)
            states = t.states(states)
        return observed, hidden

    def observed(self, observed, states):
        for t in self.transforms:
            observed = t.observed(observed, states)
            states = t.states(states)
        return observed

    def inverse(self, observed, hidden, states):
        chain = self._chain_states(states)
        for i in range(len(self.transforms) - 1, -1, -1):
            observed, hidden = self.transforms[i].inverse(observed, hidden, chain[i])
        return observed, hidden

    def repr(self):
        return " + ".join(t.repr() for t in self.transforms)


GENE_TRANSFORM = TransformComposition(PeriodicTransform(), TerminalTransform())


class TransformAlgorithm(SeqAlgorithm):
    """
    Decoder that runs a base algorithm on transformed sequences. The base
    algorithm must be built for transform.states(states).
    """

    def __init__(self, base, transform, states):
        self.base = base
        self.transform = transform
        self.states = states

    @property
    def transformed_states(self):
        return self.transform.states(self.states)

    def train(self, seq):
        observed, hidden = self.transform.sequence(seq.observed, seq.hidden, self.states)
        self.base.train(Sequence(seq.index, seq.id, observed, hidden))

    def train_set(self, dataset):
        if dataset.states != self.states:
            raise ValueError(f"Algorithm expects {self.states!r}, got a set over {dataset.states!r}")
        super().train_set(dataset)

    def reset(self):
        self.base.reset()

    def duplicate_hyperparameters_only(self):
        other = object.__new__(type(self))
        other.__dict__.update(self.__getstate__())
        other.base = self.base.duplicate_hyperparameters_only()
        return other

    def run(self, observed):
        transformed = self.transform.observed(observed, self.states)
        hidden = self.base.run(transformed)
        if hidden is None:
            return None
        return self.transform.inverse(transformed, hidden, self.states)[1]

    def repr(self):
        return super().repr() + "\nTransform: " + self.transform.repr() \
            + "\nBase algorithm: " + self.base.repr()


class GeneTransformAlgorithm(TransformAlgorithm):
    """
    Exon/intron decoder: a plain Viterbi decoder over hidden states split by codon
    phase, on sequences closed by a terminal symbol. Only predictions that end
    in coding phase 0 survive the terminal step, so the number of exon symbols
    is a multiple of three.
    """

    @classmethod
    def create(cls, order, states, **kwargs):
        base = ViterbiAlgorithm.create(1, order, GENE_TRANSFORM.states(states), **kwargs)
        return cls(base, GENE_TRANSFORM, states)
