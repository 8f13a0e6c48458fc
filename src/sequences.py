"""
Labeled sequence sets and their FASTA representation.

Symbols are stored as int8 indices into the alphabets of a StatesDescription.
A FASTA record of complete states (e.g. "ATGgtaagCAG" over "ACGTacgt") carries
both the observed and the hidden sequence: complete symbol c stands for observed
state c % n_observed and hidden state c // n_observed.
"""
import numpy as np
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord


class Sequence:
    """One row of a sequence set: observed and hidden symbol indices plus an identifier."""

    __slots__ = ("index", "id", "observed", "hidden")

    def __init__(self, index, id, observed, hidden):
        self.index = index
        self.id = id
        self.observed = observed
        self.hidden = hidden

    def __len__(self):
        return len(self.observed)

    def __repr__(self):
        return f"Sequence(index={self.index}, id={self.id!r}, length={len(self)})"


def encode(text, alphabet):
    """Converts a string into symbol indices; unknown symbols raise ValueError."""
    lookup = {ch: i for i, ch in enumerate(alphabet)}
    try:
        return np.array([lookup[ch] for ch in text], dtype=np.int8)
    except KeyError as e:
        raise ValueError(f"Unknown symbol {e.args[0]!r} for alphabet {alphabet!r}") from None


def decode(indices, alphabet):
    return "".join(alphabet[i] for i in indices)


class SequenceSet:
    """
    In-memory set of labeled sequences sharing one StatesDescription.
    """

    def __init__(self, states):
        self.states = states
        self._ids = []
        self._observed = []
        self._hidden = []

    def add(self, observed, hidden, id=None):
        observed = np.asarray(observed, dtype=np.int8)
        hidden = np.asarray(hidden, dtype=np.int8)
        if len(observed) != len(hidden):
            raise ValueError(
                f"Observed and hidden sequences differ in length: {len(observed)} != {len(hidden)}")
        if id is None:
            id = f"seq{len(self._ids)}"
        self._ids.append(id)
        self._observed.append(observed)
        self._hidden.append(hidden)

    def add_set(self, other):
        if other.states != self.states:
            raise ValueError(f"Cannot merge sets with different alphabets: "
                             f"{self.states!r} and {other.states!r}")
        for seq in other:
            self.add(seq.observed, seq.hidden, seq.id)

    def __len__(self):
        return len(self._ids)

    def length(self):
        return len(self._ids)

    def observed(self, index):
        return self._observed[index]

    def hidden(self, index):
        return self._hidden[index]

    def id(self, index):
        return self._ids[index]

    def get(self, index):
        return Sequence(index, self._ids[index], self._observed[index], self._hidden[index])

    def __getitem__(self, index):
        return self.get(index)

    def __iter__(self):
        for i in range(len(self)):
            yield self.get(i)

    def observed_states(self):
        return self.states.observed

    def hidden_states(self):
        return self.states.hidden

    def complete_states(self):
        return self.states.complete

    def total_length(self):
        return sum(len(obs) for obs in self._observed)

    def filter(self, selector):
        """
        Returns the subset selected by a boolean mask (one flag per sequence)
        or by a predicate taking a Sequence.
        """
        if callable(selector):
            mask = [bool(selector(seq)) for seq in self]
        else:
            mask = list(selector)
            if len(mask) != len(self):
                raise ValueError(f"Selector length {len(mask)} does not match set size {len(self)}")
        subset = SequenceSet(self.states)
        for i, selected in enumerate(mask):
            if selected:
                subset.add(self._observed[i], self._hidden[i], self._ids[i])
        return subset

    def encode_observed(self, text):
        return encode(text, self.states.observed)

    def encode_hidden(self, text):
        return encode(text, self.states.hidden)

    def decode_observed(self, indices):
        return decode(indices, self.states.observed)

    def decode_hidden(self, indices):
        return decode(indices, self.states.hidden)

    def repr(self):
        return (f"{len(self)} sequences, {self.total_length()} symbols "
                f"(observed={self.states.observed!r}, hidden={self.states.hidden!r})")

    def __repr__(self):
        return f"SequenceSet({self.repr()})"


class EstimatesSet:
    """
    Decoding results for a reference set. Each row holds the predicted hidden
    sequence, or None when the decoder refused it.
    """

    def __init__(self, reference):
        self.reference = reference
        self.states = reference.states
        self._hidden = [None] * len(reference)

    def put(self, index, hidden):
        if hidden is not None:
            hidden = np.asarray(hidden, dtype=np.int8)
        self._hidden[index] = hidden

    def __len__(self):
        return len(self._hidden)

    def length(self):
        return len(self._hidden)

    def observed(self, index):
        return self.reference.observed(index)

    def hidden(self, index):
        return self._hidden[index]

    def id(self, index):
        return self.reference.id(index)

    def get(self, index):
        return Sequence(index, self.id(index), self.observed(index), self._hidden[index])

    def __iter__(self):
        for i in range(len(self)):
            yield self.get(i)

    def n_denied(self):
        return sum(1 for h in self._hidden if h is None)


def length_filter(min_length=0, max_length=None):
    def accept(seq):
        n = len(seq)
        return n >= min_length and (max_length is None or n <= max_length)
    return accept


def random_filter(p, rng=None):
    """Keeps every sequence independently with probability p."""
    rng = rng if rng is not None else np.random.default_rng()

    def accept(seq):
        return rng.random() < p
    return accept


def _complete_to_pair(text, states):
    complete = encode(text, states.complete)
    return complete % states.n_observed, complete // states.n_observed


def read_fasta(path, states, labels_path=None):
    """
    Load a labeled set from FASTA.

    Without labels_path every record is a string of complete states. With it,
    path holds observed sequences and labels_path hidden label strings in the
    same record order.
    """
    dataset = SequenceSet(states)
    if labels_path is None:
        if states.complete is None:
            raise ValueError("Complete states alphabet is required to read complete-state FASTA")
        for record in SeqIO.parse(path, "fasta"):
            observed, hidden = _complete_to_pair(str(record.seq), states)
            dataset.add(observed, hidden, record.id)
        return dataset

    records = list(SeqIO.parse(path, "fasta"))
    labels = list(SeqIO.parse(labels_path, "fasta"))
    if len(records) != len(labels):
        raise ValueError(f"{path} has {len(records)} records but {labels_path} has {len(labels)}")
    for record, label in zip(records, labels):
        dataset.add(encode(str(record.seq), states.observed),
                    encode(str(label.seq), states.hidden), record.id)
    return dataset


def to_complete(observed, hidden, states):
    indices = np.asarray(observed, dtype=np.int64) + np.asarray(hidden, dtype=np.int64) * states.n_observed
    return decode(indices, states.complete)


def write_fasta(dataset, path):
    """Save a set as complete-state FASTA records."""
    if dataset.states.complete is None:
        raise ValueError("Complete states alphabet is required to write FASTA")
    records = []
    for seq in dataset:
        records.append(SeqRecord(Seq(to_complete(seq.observed, seq.hidden, dataset.states)),
                                 id=seq.id, description=""))
    SeqIO.write(records, path, "fasta")
    return len(records)
