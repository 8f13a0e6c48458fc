import numpy as np


def _ratio(a, b):
    return a / b if b else float("nan")


class PredictionQuality:
    """
    Accumulates recognition quality of predicted hidden sequences against the
    reference ones.

    Symbol level: per hidden state, true/false positives/negatives over positions.
    Region level: per hidden state, the number of actual segments (maximal runs of
    the state), predicted segments and true segments (predicted segments whose
    start and end both coincide with an actual one).

    A quality built with children=[...] holds no counters of its own; every
    metric is then the mean of the children that have seen at least one sequence.
    """

    def __init__(self, hidden_states, children=None):
        self.hidden_states = hidden_states
        self.children = list(children) if children is not None else None
        n = len(hidden_states)
        self.true_pos = np.zeros(n, dtype=np.int64)
        self.true_neg = np.zeros(n, dtype=np.int64)
        self.false_pos = np.zeros(n, dtype=np.int64)
        self.false_neg = np.zeros(n, dtype=np.int64)
        self.true_region = np.zeros(n, dtype=np.int64)
        self.actual_region = np.zeros(n, dtype=np.int64)
        self.predicted_region = np.zeros(n, dtype=np.int64)
        self._n_seq = 0
        self._n_denied = 0

    @classmethod
    def mean_of(cls, *children):
        return cls(children[0].hidden_states, children)

    @classmethod
    def compare(cls, reference, estimates):
        """Quality of a whole estimates set against its reference set."""
        if len(reference) != len(estimates):
            raise ValueError("Reference and estimates sets differ in size")
        quality = cls(reference.states.hidden)
        for i in range(len(reference)):
            quality.add_sequence(reference.hidden(i), estimates.hidden(i))
        return quality

    @property
    def n_seq(self):
        if self.children is not None:
            return sum(c.n_seq for c in self.children)
        return self._n_seq

    @property
    def n_denied(self):
        if self.children is not None:
            return sum(c.n_denied for c in self.children)
        return self._n_denied

    @staticmethod
    def _segments(seq, state):
        """(start, end) of every maximal run of state in seq, end exclusive."""
        mask = np.concatenate(([False], seq == state, [False]))
        edges = np.flatnonzero(mask[1:] != mask[:-1])
        return edges[0::2], edges[1::2]

    def add_sequence(self, reference, predicted):
        """
        Adds one sequence. predicted is None when the decoder refused the
        sequence; it is then only counted as denied.
        """
        if self.children is not None:
            raise ValueError("Cannot add sequences to a mean quality")
        self._n_seq += 1
        if predicted is None:
            self._n_denied += 1
            return
        reference = np.asarray(reference)
        predicted = np.asarray(predicted)
        if len(reference) != len(predicted):
            raise ValueError("Incompatible lengths of reference and predicted strings of states")

        for state in range(len(self.hidden_states)):
            ref = reference == state
            est = predicted == state
            self.true_pos[state] += int(np.sum(ref & est))
            self.true_neg[state] += int(np.sum(~ref & ~est))
            self.false_pos[state] += int(np.sum(~ref & est))
            self.false_neg[state] += int(np.sum(ref & ~est))

            ref_starts, ref_ends = self._segments(reference, state)
            est_starts, est_ends = self._segments(predicted, state)
            self.actual_region[state] += len(ref_starts)
            self.predicted_region[state] += len(est_starts)
            actual = set(zip(ref_starts.tolist(), ref_ends.tolist()))
            self.true_region[state] += sum(1 for seg in zip(est_starts.tolist(), est_ends.tolist())
                                           if seg in actual)

    def _mean(self, metric, state):
        values = [getattr(c, metric)(state) for c in self.children if c.n_seq > 0]
        return float(np.mean(values)) if values else 0.0

    def symbol_spec(self, state):
        if self.children is not None:
            return self._mean("symbol_spec", state)
        return _ratio(self.true_pos[state], self.true_pos[state] + self.false_pos[state])

    def symbol_sens(self, state):
        if self.children is not None:
            return self._mean("symbol_sens", state)
        return _ratio(self.true_pos[state], self.true_pos[state] + self.false_neg[state])

    def symbol_acp(self, state):
        """Average conditional probability."""
        if self.children is not None:
            return self._mean("symbol_acp", state)
        tn, fn, fp = self.true_neg[state], self.false_neg[state], self.false_pos[state]
        return 0.25 * (self.symbol_spec(state) + self.symbol_sens(state)
                       + _ratio(tn, tn + fn) + _ratio(tn, tn + fp))

    def symbol_cc(self, state):
        """Correlation coefficient."""
        if self.children is not None:
            return self._mean("symbol_cc", state)
        tp, tn = float(self.true_pos[state]), float(self.true_neg[state])
        fp, fn = float(self.false_pos[state]), float(self.false_neg[state])
        return _ratio(tp * tn - fp * fn, np.sqrt((tp + fn) * (tp + fp) * (tn + fp) * (tn + fn)))

    def region_spec(self, state):
        if self.children is not None:
            return self._mean("region_spec", state)
        return _ratio(self.true_region[state], self.predicted_region[state])

    def region_sens(self, state):
        if self.children is not None:
            return self._mean("region_sens", state)
        return _ratio(self.true_region[state], self.actual_region[state])

    def symbol_precision(self, state=None):
        """Share of correctly labeled symbols (the state argument is ignored)."""
        if self.children is not None:
            return self._mean("symbol_precision", 0)
        n_symbols = self.true_pos[0] + self.true_neg[0] + self.false_pos[0] + self.false_neg[0]
        return _ratio(self.true_pos.sum(), n_symbols)

    def as_dict(self, state):
        return {
            "symbol_spec": self.symbol_spec(state),
            "symbol_sens": self.symbol_sens(state),
            "symbol_acp": self.symbol_acp(state),
            "symbol_cc": self.symbol_cc(state),
            "region_spec": self.region_spec(state),
            "region_sens": self.region_sens(state),
        }

    def repr_state(self, state):
        text = ("SSp = {:.2f}%, SSn = {:.2f}%, ACP = {:.2f}%, CC = {:.2f}%; "
                "RSp = {:.2f}%, RSn = {:.2f}%").format(
            self.symbol_spec(state) * 100, self.symbol_sens(state) * 100,
            self.symbol_acp(state) * 100, self.symbol_cc(state) * 100,
            self.region_spec(state) * 100, self.region_sens(state) * 100)
        if self.children is None:
            text += (f"\nTP = {self.true_pos[state]}, TN = {self.true_neg[state]}, "
                     f"FP = {self.false_pos[state]}, FN = {self.false_neg[state]}; "
                     f"TR = {self.true_region[state]}, AR = {self.actual_region[state]}, "
                     f"PR = {self.predicted_region[state]}")
        return text

    def repr(self, state=None):
        if state is not None:
            return self.repr_state(state)
        lines = []
        if self.n_denied > 0:
            lines.append(f"Not recognized: {self.n_denied}")
        for state, name in enumerate(self.hidden_states):
            lines.append(f"State '{name}': " + self.repr_state(state))
        return "\n".join(lines)
