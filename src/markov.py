"""
Variable-order Markov chains over complete (observed + hidden) states.

A chain of order k and dependency length h predicts the next h complete states
from the preceding k ones. Statistics are weighted counts:

    * initial[tail]         - how often a sequence starts with the order-length fragment tail;
    * transitions[tail][h]  - how often head fragment h follows tail; the last slot
                              of each row holds the row sum.

Rows are addressed by the total index of the tail fragment, columns by the total
index of the head fragment (see FragmentFactory.total_index), so no hashing of
fragments is needed on lookups. Small tables are kept as one dense numpy array,
large ones as a dict of rows for the tails actually seen.
"""
import copy

import numpy as np

import config
from distributions import EmpiricalDistribution
from fragments import FragmentFactory, sequence


class MarkovChain:

    def __init__(self, dep_length, order, states, dense_limit=None, p_floor=None):
        if dep_length < 1:
            raise ValueError(f"Dependency length must be positive, got {dep_length}")
        if order < 0:
            raise ValueError(f"Order must be non-negative, got {order}")
        self.dep_length = dep_length
        self.order = order
        self.states = states
        self.dense_limit = config.DENSE_TABLE_LIMIT if dense_limit is None else dense_limit
        self.p_floor = config.ESTIMATE_P_FLOOR if p_floor is None else p_floor
        self._initialize()

    @classmethod
    def for_set(cls, dep_length, order, dataset, **kwargs):
        return cls(dep_length, order, dataset.states, **kwargs)

    def _initialize(self):
        self.factory = FragmentFactory(self.states.observed, self.states.hidden,
                                       self.order + self.dep_length)
        n_complete = self.states.n_complete
        self.n_heads = n_complete ** self.dep_length
        self.n_tails = n_complete ** self.order

        self.n_sequences = 0
        self.initial_weight = 0.0
        self._initial = {}
        if self.n_tails * (self.n_heads + 1) <= self.dense_limit:
            self._dense = np.zeros((self.n_tails, self.n_heads + 1))
            self._rows = None
        else:
            self._dense = None
            self._rows = {}
        self.length_distr = EmpiricalDistribution()

    @property
    def is_dense(self):
        return self._dense is not None

    # --- copies -----------------------------------------------------------

    # Attributes rebuilt by _initialize()
    _STATISTICS = ("factory", "n_heads", "n_tails", "n_sequences", "initial_weight", "_initial",
                   "_dense", "_rows", "length_distr")

    def duplicate_with_state(self):
        return copy.deepcopy(self)

    def duplicate_hyperparameters_only(self):
        other = object.__new__(type(self))
        other.__dict__.update((k, v) for k, v in self.__dict__.items()
                              if k not in self._STATISTICS)
        other._initialize()
        return other

    clear_clone = duplicate_hyperparameters_only

    def __deepcopy__(self, memo):
        # Bypasses __getstate__, which trades precision for size
        other = object.__new__(type(self))
        memo[id(self)] = other
        for key, value in self.__dict__.items():
            other.__dict__[key] = copy.deepcopy(value, memo)
        return other

    def __getstate__(self):
        state = self.__dict__.copy()
        del state["factory"]
        # Counts are stored in single precision to halve the file size
        if self._dense is not None:
            state["_dense"] = self._dense.astype(np.float32)
        else:
            state["_rows"] = {k: row.astype(np.float32) for k, row in self._rows.items()}
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        if self._dense is not None:
            self._dense = self._dense.astype(np.float64)
        else:
            self._rows = {k: row.astype(np.float64) for k, row in self._rows.items()}
        self.factory = FragmentFactory(self.states.observed, self.states.hidden,
                                       self.order + self.dep_length)

    # --- statistics -------------------------------------------------------

    def _row(self, tail_index):
        if self._dense is not None:
            row = self._dense[tail_index]
            return row if row[-1] > 0 else None
        return self._rows.get(tail_index)

    def _window_indices(self, observed, hidden, starts, length):
        """Total indices of the fragments observed[s:s + length] for every s in starts."""
        obs = np.zeros(len(starts), dtype=np.int64)
        hid = np.zeros(len(starts), dtype=np.int64)
        for k in range(length):
            obs = obs * self.states.n_observed + observed[starts + k].astype(np.int64)
            hid = hid * self.states.n_hidden + hidden[starts + k].astype(np.int64)
        return obs + hid * self.factory.obs_power[length]

    def _transition_windows(self, observed, hidden):
        positions = np.arange(self.order, len(observed) - self.dep_length + 1, self.dep_length)
        tails = self._window_indices(observed, hidden, positions - self.order, self.order)
        heads = self._window_indices(observed, hidden, positions, self.dep_length)
        return tails, heads

    def train(self, observed, hidden, weight=1.0):
        """
        Digests one labeled sequence with the given weight.

        Sequences shorter than the order and non-positive weights are ignored.
        """
        if weight <= 0.0 or len(observed) < self.order:
            return
        observed = np.asarray(observed)
        hidden = np.asarray(hidden)
        self.length_distr.train(len(observed), weight)

        init = self.factory.total_index(self.factory.fragment(observed, hidden, 0, self.order))
        self._initial[init] = self._initial.get(init, 0.0) + weight
        self.initial_weight += weight

        tails, heads = self._transition_windows(observed, hidden)
        if self._dense is not None:
            np.add.at(self._dense, (tails, heads), weight)
            np.add.at(self._dense[:, -1], tails, weight)
        else:
            for tail, head in zip(tails.tolist(), heads.tolist()):
                row = self._rows.get(tail)
                if row is None:
                    row = np.zeros(self.n_heads + 1)
                    self._rows[tail] = row
                row[head] += weight
                row[-1] += weight
        self.n_sequences += 1

    def train_set(self, dataset, weights=None):
        if weights is not None and len(weights) != len(dataset):
            raise ValueError(f"Got {len(weights)} weights for {len(dataset)} sequences")
        for i, seq in enumerate(dataset):
            w = 1.0 if weights is None else float(weights[i])
            self.train(seq.observed, seq.hidden, w)

    def reset(self):
        self.n_sequences = 0
        self.initial_weight = 0.0
        self._initial.clear()
        if self._dense is not None:
            self._dense[:] = 0
        else:
            self._rows.clear()
        self.length_distr.reset()

    # --- probabilities ----------------------------------------------------

    def get_initial_p(self, fragment):
        # Normalized by the total weight, so weighted training yields a distribution
        if self.initial_weight <= 0:
            return 0.0
        return self._initial.get(self.factory.total_index(fragment), 0.0) / self.initial_weight

    def get_trans_p(self, tail, head):
        row = self._row(self.factory.total_index(tail))
        if row is None:
            return 0.0
        return row[self.factory.total_index(head)] / row[-1]

    def _trans_probs(self, tails, heads):
        """get_trans_p for parallel arrays of tail and head total indices."""
        if self._dense is not None:
            counts = self._dense[tails, heads]
            sums = self._dense[tails, -1]
            return np.divide(counts, sums, out=np.zeros_like(counts), where=sums > 0)
        result = np.zeros(len(tails))
        for i, (tail, head) in enumerate(zip(tails.tolist(), heads.tolist())):
            row = self._rows.get(tail)
            if row is not None:
                result[i] = row[head] / row[-1]
        return result

    def estimate(self, observed, hidden):
        """
        Log-likelihood of a labeled sequence. Every factor is floored at p_floor,
        so the result is finite even for unseen transitions.
        """
        if len(observed) < self.order:
            return 0.0
        observed = np.asarray(observed)
        hidden = np.asarray(hidden)
        init = self.factory.fragment(observed, hidden, 0, self.order)
        log_p = np.log(max(self.p_floor, self.get_initial_p(init)))
        tails, heads = self._transition_windows(observed, hidden)
        if len(tails):
            log_p += np.sum(np.log(np.maximum(self.p_floor, self._trans_probs(tails, heads))))
        return float(log_p)

    def estimate_set(self, dataset):
        return np.array([self.estimate(seq.observed, seq.hidden) for seq in dataset])

    # --- decoder support --------------------------------------------------

    def initial_vector(self, observed):
        """Initial probabilities of every hidden tail given the first order observed symbols."""
        obs_index = self.factory.observed_index(observed, 0, self.order)
        return np.array([self.get_initial_p(self.factory.make(obs_index, h, self.order))
                         for h in range(self.factory.hid_power[self.order])])

    def trans_matrix(self, observed, pos):
        """
        Transition probabilities at position pos for fixed observed symbols:
        result[head_hidden, tail_hidden] = P(head | tail), where the tail covers
        observed[pos - order:pos] and the head observed[pos:pos + dep_length].
        """
        f = self.factory
        tail_obs = f.observed_index(observed, pos - self.order, self.order)
        head_obs = f.observed_index(observed, pos, self.dep_length)
        tails = tail_obs + np.arange(f.hid_power[self.order], dtype=np.int64) * f.obs_power[self.order]
        heads = head_obs + np.arange(f.hid_power[self.dep_length], dtype=np.int64) \
            * f.obs_power[self.dep_length]
        if self._dense is not None:
            rows = self._dense[tails]
            counts = rows[:, heads]
            sums = rows[:, -1:]
            probs = np.divide(counts, sums, out=np.zeros_like(counts), where=sums > 0)
            return probs.T
        probs = np.zeros((len(heads), len(tails)))
        for j, tail in enumerate(tails.tolist()):
            row = self._rows.get(tail)
            if row is not None:
                probs[:, j] = row[heads] / row[-1]
        return probs

    def _trans_matrix_generic(self, observed, pos):
        """trans_matrix() through get_trans_p(), for chains that override the latter."""
        f = self.factory
        tail_obs = f.observed_index(observed, pos - self.order, self.order)
        head_obs = f.observed_index(observed, pos, self.dep_length)
        n_tails = f.hid_power[self.order]
        n_heads = f.hid_power[self.dep_length]
        probs = np.zeros((n_heads, n_tails))
        for t in range(n_tails):
            tail = f.make(tail_obs, t, self.order)
            for h in range(n_heads):
                probs[h, t] = self.get_trans_p(tail, f.make(head_obs, h, self.dep_length))
        return probs

    # --- inspection -------------------------------------------------------

    def initial_table(self):
        if self.initial_weight <= 0:
            return {}
        return {self.factory.from_total_index(k, self.order): v / self.initial_weight
                for k, v in self._initial.items()}

    def transition_table(self):
        """Seen tails mapped to copies of their count rows (last slot is the row sum)."""
        if self._dense is not None:
            seen = np.nonzero(self._dense[:, -1] > 0)[0]
            items = ((int(k), self._dense[k]) for k in seen)
        else:
            items = self._rows.items()
        return {self.factory.from_total_index(k, self.order): row.copy() for k, row in items}

    def generate(self, rng=None):
        """
        Samples (observed, hidden) from the chain. The sequence is cut short if it
        reaches a tail that was never seen in training.
        """
        rng = rng if rng is not None else np.random.default_rng()
        if not self._initial:
            raise ValueError("Cannot generate from an untrained chain")
        length = -1
        while length < self.order:
            length = self.length_distr.generate(rng)

        observed = np.zeros(length + self.dep_length, dtype=np.int8)
        hidden = np.zeros(length + self.dep_length, dtype=np.int8)
        keys = list(self._initial)
        p = np.array([self._initial[k] for k in keys])
        tail = self.factory.from_total_index(keys[rng.choice(len(keys), p=p / p.sum())], self.order)
        self.factory.embed(tail, observed, hidden, 0)

        pos = self.order
        while pos < length:
            row = self._row(self.factory.total_index(tail))
            if row is None:
                break
            head = self.factory.from_total_index(
                int(rng.choice(self.n_heads, p=row[:-1] / row[-1])), self.dep_length)
            self.factory.embed(head, observed, hidden, pos)
            tail = self.factory.suffix(self.factory.compose(tail, head), self.order)
            pos += self.dep_length
        end = min(pos, length)
        return observed[:end], hidden[:end]

    def repr(self):
        return f"Markov chain (dep. length = {self.dep_length}, order = {self.order})"

    def __repr__(self):
        return f"MarkovChain(dep_length={self.dep_length}, order={self.order}, " \
               f"sequences={self.n_sequences})"
