"""
Common contract of the sequence labeling algorithms.

An algorithm is trained on labeled sequences and then maps an observed
sequence to a predicted hidden sequence, or to None when it refuses to decode it.
"""
import copy
import threading

import config
from env import default_env
from sequences import EstimatesSet


class JobListener:
    """Receives progress notifications from run_set()."""

    def seq_completed(self, index, hidden):
        pass

    def finished(self):
        pass


class DefaultJobListener(JobListener):
    """
    Prints a dot every seq_per_dot sequences, '?' for every refused sequence
    and the running count at the end of each line of dots.
    """

    _printed_key = False

    def __init__(self, env=None, seq_per_dot=config.SEQ_PER_DOT, dots_per_line=config.DOTS_PER_LINE):
        self.env = env if env is not None else default_env()
        self.seq_per_dot = seq_per_dot
        self.dots_per_line = dots_per_line
        self.n_processed = 0
        self._lock = threading.Lock()

    def seq_completed(self, index, hidden):
        with self._lock:
            if self.n_processed == 0 and not DefaultJobListener._printed_key:
                self.env.debug(1, f"Progress: '.' = {self.seq_per_dot} sequences, '?' = refusal")
                DefaultJobListener._printed_key = True
            self.n_processed += 1
            if self.n_processed % self.seq_per_dot == 0:
                self.env.debug_inline(1, ".")
            if hidden is None:
                self.env.debug_inline(1, "?")
            if self.n_processed % (self.seq_per_dot * self.dots_per_line) == 0:
                self.env.debug(1, str(self.n_processed))

    def finished(self):
        if self.n_processed % (self.seq_per_dot * self.dots_per_line) >= self.seq_per_dot:
            self.env.debug(1, "")


class SeqAlgorithm:
    """
    Base class for algorithms. Subclasses implement train() and run(); per-thread
    scratch memory is available through _memory().
    """

    def train(self, seq):
        raise NotImplementedError

    def train_set(self, dataset):
        for seq in dataset:
            self.train(seq)

    def reset(self):
        raise NotImplementedError

    def run(self, observed):
        raise NotImplementedError

    def run_set(self, dataset, listener=None):
        estimates = EstimatesSet(dataset)
        for i in range(len(dataset)):
            result = self.run(dataset.observed(i))
            estimates.put(i, result)
            if listener is not None:
                listener.seq_completed(i, result)
        if listener is not None:
            listener.finished()
        return estimates

    def duplicate_with_state(self):
        return copy.deepcopy(self)

    def duplicate_hyperparameters_only(self):
        other = self.duplicate_with_state()
        other.reset()
        return other

    def clear_clone(self):
        return self.duplicate_hyperparameters_only()

    # --- scratch memory ---------------------------------------------------

    def _memory(self):
        local = self.__dict__.get("_local")
        if local is None:
            local = self.__dict__.setdefault("_local", threading.local())
        mem = getattr(local, "memory", None)
        if mem is None:
            mem = self._allocate_memory()
            local.memory = mem
        return mem

    def _allocate_memory(self):
        return {}

    def __getstate__(self):
        state = self.__dict__.copy()
        state.pop("_local", None)
        return state

    def __deepcopy__(self, memo):
        other = object.__new__(type(self))
        memo[id(self)] = other
        for key, value in self.__getstate__().items():
            other.__dict__[key] = copy.deepcopy(value, memo)
        return other

    def repr(self):
        return f"Algorithm: {type(self).__name__}"
