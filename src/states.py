import threading

# Alphabets used for gene fragments: exon (x) / intron (i) labels,
# complete states written as upper case (exon) and lower case (intron) nucleotides
GENE_OBSERVED = "ACGT"
GENE_HIDDEN = "xi"
GENE_COMPLETE = "ACGTacgt"

_cache = {}
_cache_lock = threading.Lock()


class StatesDescription:
    """
    Immutable triple of alphabets: observed states, hidden states and,
    optionally, complete states (one symbol per observed/hidden pair).

    Instances are interned, use StatesDescription.create() to obtain one.
    A complete state with index c corresponds to observed state c % n_observed
    and hidden state c // n_observed.
    """

    __slots__ = ("_observed", "_hidden", "_complete")

    @staticmethod
    def create(observed, hidden, complete=None):
        key = (observed, hidden, complete)
        with _cache_lock:
            states = _cache.get(key)
            if states is None:
                states = StatesDescription(observed, hidden, complete)
                _cache[key] = states
        return states

    def __init__(self, observed, hidden, complete=None):
        if not observed or not hidden:
            raise ValueError("Alphabets of observed and hidden states must be non-empty")
        if complete is not None and len(complete) != len(observed) * len(hidden):
            raise ValueError(
                f"Invalid number of complete states: {len(complete)}, "
                f"expected {len(observed) * len(hidden)}")
        object.__setattr__(self, "_observed", observed)
        object.__setattr__(self, "_hidden", hidden)
        object.__setattr__(self, "_complete", complete)

    def __setattr__(self, name, value):
        raise AttributeError("StatesDescription is immutable")

    def __reduce__(self):
        # unpickling goes through the cache as well
        return (StatesDescription.create, (self._observed, self._hidden, self._complete))

    @property
    def observed(self):
        return self._observed

    @property
    def hidden(self):
        return self._hidden

    @property
    def complete(self):
        return self._complete

    @property
    def n_observed(self):
        return len(self._observed)

    @property
    def n_hidden(self):
        return len(self._hidden)

    @property
    def n_complete(self):
        return self.n_observed * self.n_hidden

    def __eq__(self, other):
        if not isinstance(other, StatesDescription):
            return NotImplemented
        return (self._observed, self._hidden, self._complete) == \
            (other._observed, other._hidden, other._complete)

    def __hash__(self):
        return hash((self._observed, self._hidden, self._complete))

    def __repr__(self):
        if self._complete is None:
            return f"StatesDescription({self._observed!r}, {self._hidden!r})"
        return f"StatesDescription({self._observed!r}, {self._hidden!r}, {self._complete!r})"


def gene_states():
    """States for exon/intron recognition on nucleotide sequences."""
    return StatesDescription.create(GENE_OBSERVED, GENE_HIDDEN, GENE_COMPLETE)
