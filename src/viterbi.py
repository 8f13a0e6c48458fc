"""
Maximum likelihood decoding of hidden sequences under a Markov chain.

The decoder walks the observed sequence in steps of dep_length. Its state is the
hidden part of the last `order` complete states (the "tail"); the gene decoder
additionally tracks the number of coding symbols seen so far modulo 3 (the
phase). For every step and every state the best log-probability and a
back-pointer are kept; ties are resolved in favour of the smallest
(head, previous tail, previous phase) triple.
"""
import numpy as np

import config
from algorithm import SeqAlgorithm
from fallthru import FallthruChain
from fragments import sequence
from markov import MarkovChain


class ViterbiAlgorithm(SeqAlgorithm):

    # Number of phases tracked by the decoder
    codon_length = 1

    def __init__(self, chain, max_seq_length=config.MAX_SEQ_LENGTH):
        self.chain = chain
        self.max_seq_length = max_seq_length

    @classmethod
    def create(cls, dep_length, order, states, **kwargs):
        return cls(MarkovChain(dep_length, order, states), **kwargs)

    @property
    def order(self):
        return self.chain.order

    @property
    def dep_length(self):
        return self.chain.dep_length

    def train(self, seq):
        self.chain.train(seq.observed, seq.hidden)

    def train_set(self, dataset):
        self.chain.train_set(dataset)

    def reset(self):
        self.chain.reset()

    def duplicate_hyperparameters_only(self):
        other = object.__new__(type(self))
        other.__dict__.update(self.__getstate__())
        other.chain = self.chain.duplicate_hyperparameters_only()
        return other

    def run(self, observed):
        return self.decode(observed, self.chain, self.codon_length)

    # --- decoding ---------------------------------------------------------

    def _allocate_memory(self):
        return {"pointer": None}

    def _pointer_buffer(self, n_steps, n_states):
        """Back-pointer array of at least n_steps rows, reused by the calling thread."""
        mem = self._memory()
        buf = mem["pointer"]
        if buf is None or buf.shape[0] < n_steps or buf.shape[1] != n_states:
            rows = max(n_steps, 1)
            if buf is not None and buf.shape[1] == n_states:
                rows = min(max(rows, 2 * buf.shape[0]), self.max_seq_length)
            buf = np.empty((rows, n_states), dtype=np.int32)
            mem["pointer"] = buf
        return buf

    @staticmethod
    def _coding_counts(n_hidden, length, coding_state=0):
        """Number of coding symbols in every hidden fragment of the given length."""
        return np.array([int(np.sum(sequence(i, n_hidden, length) == coding_state))
                         for i in range(n_hidden ** length)], dtype=np.int64)

    def decode(self, observed, chain, codon_length=1):
        """
        Most probable hidden sequence for the observed one, or None if the sequence
        is too short or too long, or every hidden sequence has zero probability.

        With codon_length = 3 only hidden sequences whose number of coding
        symbols (hidden state 0) is divisible by three are considered. Symbols
        past the last full step are labeled as coding.
        """
        order, dep = chain.order, chain.dep_length
        length = len(observed)
        if length < order or length > self.max_seq_length:
            return None

        n_hidden = chain.states.n_hidden
        n_tails = n_hidden ** order
        n_heads = n_hidden ** dep
        n_states = codon_length * n_tails
        trimmed = ((length - order) // dep) * dep + order
        n_steps = (trimmed - order) // dep

        head_codons = self._coding_counts(n_hidden, dep) % codon_length
        tail_codons = self._coding_counts(n_hidden, order) % codon_length

        heads = np.arange(n_heads)[:, None]
        tails = np.arange(n_tails)[None, :]
        # shift(tail, head) for every (head, tail) pair
        next_tail = (tails * n_heads + heads) % n_tails
        phases = np.arange(codon_length)
        # Target state of every candidate, candidates ordered as (head, tail, phase)
        target = ((phases[None, None, :] + head_codons[:, None, None]) % codon_length) * n_tails \
            + next_tail[:, :, None]
        target = target.ravel()
        candidate_ids = np.arange(target.size)

        with np.errstate(divide="ignore"):
            cur = np.full((codon_length, n_tails), -np.inf)
            cur[tail_codons, np.arange(n_tails)] = np.log(chain.initial_vector(observed))

            pointer = self._pointer_buffer(n_steps, n_states)
            for step in range(n_steps):
                pos = order + step * dep
                log_trans = np.log(chain.trans_matrix(observed, pos))
                cand = (log_trans[:, :, None] + cur.T[None, :, :]).ravel()

                best = np.full(n_states, -np.inf)
                np.maximum.at(best, target, cand)
                winners = np.full(n_states, target.size, dtype=np.int64)
                hit = cand == best[target]
                np.minimum.at(winners, target[hit], candidate_ids[hit])

                pointer[step] = np.where(winners < target.size, winners, 0)
                cur = best.reshape(codon_length, n_tails)

        phase = (trimmed - length) % codon_length
        state = int(np.argmax(cur[phase]))
        if cur[phase, state] == -np.inf:
            return None

        result = np.zeros(length, dtype=np.int8)
        for step in range(n_steps - 1, -1, -1):
            p = int(pointer[step, phase * n_tails + state])
            head, rest = divmod(p, n_tails * codon_length)
            state, phase = divmod(rest, codon_length)
            pos = order + step * dep
            result[pos:pos + dep] = sequence(head, n_hidden, dep)
        result[:order] = sequence(state, n_hidden, order)
        return result

    def repr(self):
        return super().repr() + "\n" + self.chain.repr()

    def __repr__(self):
        return f"[{type(self).__name__}: {self.chain!r}]"


class GeneViterbiAlgorithm(ViterbiAlgorithm):
    """
    Viterbi decoder for exon/intron labeling. With validate_cds the total number
    of exon symbols in the prediction is a multiple of three.
    """

    def __init__(self, chain, validate_cds=True, **kwargs):
        super().__init__(chain, **kwargs)
        self.validate_cds = validate_cds

    @classmethod
    def create(cls, order, states, validate_cds=True, **kwargs):
        return cls(MarkovChain(1, order, states), validate_cds, **kwargs)

    @property
    def codon_length(self):
        return 3 if self.validate_cds else 1

    def repr(self):
        return super().repr() + f"\nValidate coding length: {self.validate_cds}"


class FallthruAlgorithm(ViterbiAlgorithm):
    """Viterbi decoder over a fallthru chain."""

    def __init__(self, approx, states, **kwargs):
        super().__init__(FallthruChain(approx, states), **kwargs)
        self.approx = approx
