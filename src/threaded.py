from algorithm import DefaultJobListener, SeqAlgorithm
from env import default_env
from sequences import EstimatesSet

# Result of a task that was skipped because the job had been interrupted
_SKIPPED = object()


class ThreadedAlgorithm(SeqAlgorithm):
    """
    Decodes the sequences of a set in parallel on the worker pool of an Env.
    Training and single-sequence decoding are delegated to the base algorithm.
    """

    def __init__(self, base, env=None):
        self.base = base
        self.env = env

    def _env(self):
        return self.env if self.env is not None else default_env()

    def __getstate__(self):
        state = super().__getstate__()
        state["env"] = None
        return state

    def train(self, seq):
        self.base.train(seq)

    def train_set(self, dataset):
        self.base.train_set(dataset)

    def reset(self):
        self.base.reset()

    def run(self, observed):
        return self.base.run(observed)

    def duplicate_hyperparameters_only(self):
        return ThreadedAlgorithm(self.base.duplicate_hyperparameters_only(), self.env)

    def run_set(self, dataset, listener=None):
        """
        Submits one task per sequence and collects the results in index order.

        The listener is notified from the calling thread, in index order. A task
        that raises is reported through Env.exception() and leaves its slot empty
        without a notification, as do tasks skipped after an interruption.
        """
        env = self._env()
        if listener is None:
            listener = DefaultJobListener(env)

        def decode(index):
            if env.is_interrupted():
                return _SKIPPED
            return self.base.run(dataset.observed(index))

        executor = env.executor()
        futures = [executor.submit(decode, i) for i in range(len(dataset))]
        estimates = EstimatesSet(dataset)
        try:
            for i, future in enumerate(futures):
                try:
                    result = future.result()
                except Exception as e:
                    env.exception(e)
                    continue
                if result is _SKIPPED:
                    continue
                estimates.put(i, result)
                listener.seq_completed(i, result)
        except BaseException:
            for future in futures:
                future.cancel()
            raise
        listener.finished()
        return estimates

    def repr(self):
        return super().repr() + f"\nThreads: {self._env().thread_count()}" \
            + "\nBase algorithm: " + self.base.repr()

    def __repr__(self):
        return f"ThreadedAlgorithm({self.base!r})"
