"""
Resumable evaluation jobs.

A job (Launchable) can be saved at any point with SnapshotStore and restarted
from the saved file: every AlgorithmRun remembers which sequences it has
already decoded and only decodes the rest.
"""
import numpy as np

import config
import snapshot
from algorithm import DefaultJobListener
from env import default_env
from quality import PredictionQuality
from threaded import ThreadedAlgorithm


class Launchable:
    """
    Base class for long-running jobs. run(env) calls do_run(); if the user
    interrupts it (KeyboardInterrupt), progress is saved once and the
    interrupt is re-raised.
    """

    # Attributes that are never pickled
    _TRANSIENT = ("env", "_store")

    def __init__(self):
        self.env = None
        self._store = None

    def get_env(self):
        return self.env if self.env is not None else default_env()

    def set_save_file(self, path):
        self._store = snapshot.SnapshotStore(path) if path is not None else None

    @property
    def save_file(self):
        return self._store.path if self._store is not None else None

    def run(self, env=None):
        self.env = env if env is not None else default_env()
        self.env.clear_interruption()
        try:
            self.do_run()
        except KeyboardInterrupt:
            self.env.interrupted_by_user = True
            self.save()
            raise
        except Exception:
            self.env.interrupted_by_error = True
            raise

    def do_run(self):
        raise NotImplementedError

    def save(self, quiet=False):
        if self._store is None:
            return None
        try:
            path = self._store.save(self)
        except snapshot.SnapshotError as e:
            self.get_env().error(0, f"Error saving progress: {e}")
            raise
        if not quiet:
            self.get_env().debug(1, f"Progress saved to {path}")
        return path

    def __getstate__(self):
        state = self.__dict__.copy()
        for key in self._TRANSIENT:
            state.pop(key, None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        for key in self._TRANSIENT:
            self.__dict__.setdefault(key, None)


class _RunListener(DefaultJobListener):
    """Updates an AlgorithmRun as its unprocessed sequences are decoded."""

    def __init__(self, run, unprocessed, indices, env):
        super().__init__(env)
        self.run = run
        self.unprocessed = unprocessed
        self.indices = indices

    def seq_completed(self, index, hidden):
        run = self.run
        run.quality.add_sequence(self.unprocessed.hidden(index), hidden)
        run.unprocessed[self.indices[index]] = False
        super().seq_completed(index, hidden)

        run.n_processed += 1
        if run.n_processed % run.parent.sequences_per_save == 0:
            self.env.debug_inline(2, "S")
            run.parent.save(quiet=True)

    def finished(self):
        super().finished()
        self.run.parent.save()


class AlgorithmRun:
    """
    Decoding of one fixed set (parent.get_set(run_index)) with progress tracking.
    """

    def __init__(self, parent, run_index):
        self.parent = parent
        self.run_index = run_index
        self.n_processed = 0
        dataset = self.get_set()
        self.unprocessed = np.ones(len(dataset), dtype=bool)
        self.quality = PredictionQuality(dataset.states.hidden)

    def get_set(self):
        dataset = self.__dict__.get("_set")
        if dataset is None:
            dataset = self.parent.get_set(self.run_index)
            self._set = dataset
        return dataset

    def __getstate__(self):
        state = self.__dict__.copy()
        state.pop("_set", None)
        return state

    def is_complete(self):
        return not self.unprocessed.any()

    def run(self, algorithm):
        """Decodes the sequences not processed yet."""
        dataset = self.get_set()
        indices = np.flatnonzero(self.unprocessed).tolist()
        unprocessed = dataset.filter(self.unprocessed)
        listener = _RunListener(self, unprocessed, indices, self.parent.get_env())
        return algorithm.run_set(unprocessed, listener)

    def repr(self):
        text = f"Sequences: {len(self.get_set())}, processed: {self.n_processed}"
        if self.n_processed > 0:
            text += "\n" + self.quality.repr()
        return text


class _AlgorithmHolder(Launchable):
    """
    Job with an attached algorithm. The algorithm is pickled separately, without
    its learned statistics, so a model that fails to load does not prevent the
    progress of the job from loading.
    """

    _TRANSIENT = Launchable._TRANSIENT + ("algorithm",)

    def __init__(self):
        super().__init__()
        self.algorithm = None
        self.sequences_per_save = config.SEQ_PER_SAVE

    def attach_algorithm(self, algorithm):
        self.algorithm = algorithm

    def __getstate__(self):
        state = super().__getstate__()
        state["_algorithm_blob"] = None
        if self.algorithm is not None:
            state["_algorithm_blob"] = snapshot.dumps(self.algorithm.duplicate_hyperparameters_only())
        return state

    def __setstate__(self, state):
        blob = state.pop("_algorithm_blob", None)
        super().__setstate__(state)
        self.algorithm = None
        if blob is not None:
            try:
                self.algorithm = snapshot.loads(blob)
            except snapshot.SnapshotError as e:
                default_env().error(0, f"Cannot load the attached algorithm: {e}")

    def _check_algorithm(self):
        if self.algorithm is None:
            raise RuntimeError("No algorithm attached")


class CrossValidation(_AlgorithmHolder):
    """
    n-fold cross-validation. Every sequence gets a random fold; run 2k trains
    on everything outside fold k and decodes that training set, run 2k + 1
    decodes fold k itself.
    """

    def __init__(self, dataset, n_folds, rng=None):
        super().__init__()
        if n_folds < 1:
            raise ValueError(f"Number of folds must be positive, got {n_folds}")
        rng = rng if rng is not None else np.random.default_rng()
        self.dataset = dataset
        self.n_folds = n_folds
        self.skip_training = True
        self.fold_index = rng.integers(n_folds, size=len(dataset)).astype(np.int16)
        self.runs = [AlgorithmRun(self, r) for r in range(2 * n_folds)]
        self._mean_training = PredictionQuality.mean_of(*[r.quality for r in self.runs[0::2]])
        self._mean_control = PredictionQuality.mean_of(*[r.quality for r in self.runs[1::2]])

    def get_set(self, index):
        selector = self.fold_index == index // 2
        if index % 2 == 0:
            selector = ~selector
        return self.dataset.filter(selector)

    def mean_training(self):
        return self._mean_training

    def mean_control(self):
        return self._mean_control

    def run(self, env=None):
        self._check_algorithm()
        super().run(env)

    def do_run(self):
        env = self.get_env()
        algorithm = ThreadedAlgorithm(self.algorithm, env)
        env.debug(1, self._repr_header())

        for r, run in enumerate(self.runs):
            env.debug(1, self._run_name(r))
            env.debug(1, run.repr())
            if r % 2 == 0 and self.skip_training:
                env.debug(1, "Skipping the training set\n")
                continue
            if run.is_complete():
                continue

            training_set = self.runs[r - r % 2].get_set()
            algorithm.reset()
            algorithm.train_set(training_set)
            run.run(algorithm)
            env.debug(1, "Quality:\n" + run.quality.repr())

    def save(self, quiet=False):
        if not self.get_env().interrupted_by_user:
            self.get_env().debug_inline(2, "S")
        return super().save(quiet)

    def _repr_header(self):
        n_processed = sum(run.n_processed for run in self.runs)
        lines = [f"Cross-validation: {self.n_folds} folds, {len(self.dataset)} sequences, "
                 f"{n_processed} processed",
                 "Dataset: " + self.dataset.repr()]
        if self.algorithm is not None:
            lines.append("Algorithm: " + self.algorithm.repr())
        return "\n".join(lines) + "\n"

    @staticmethod
    def _run_name(index):
        kind = "training" if index % 2 == 0 else "control"
        return f"[CV] Fold {index // 2 + 1}, {kind} set"

    def repr(self):
        lines = [self._repr_header()]
        for i, run in enumerate(self.runs):
            lines.append(self._run_name(i))
            lines.append(run.repr())
        lines.append("")
        lines.append("Mean quality on training sets:\n" + self._mean_training.repr())
        lines.append("Mean quality on control sets:\n" + self._mean_control.repr())
        return "\n".join(lines)


class QualityEstimation(_AlgorithmHolder):
    """Trains on one set and decodes another."""

    def __init__(self, training_set, control_set):
        super().__init__()
        self.training_set = training_set
        self.control_set = control_set
        self.algorithm_run = AlgorithmRun(self, 0)

    def get_set(self, index):
        if index == 0:
            return self.control_set
        raise ValueError(f"Invalid set index: {index}")

    def quality(self):
        return self.algorithm_run.quality

    def do_run(self):
        self._check_algorithm()
        env = self.get_env()
        algorithm = ThreadedAlgorithm(self.algorithm, env)
        env.debug(1, self.repr())
        algorithm.train_set(self.training_set)
        self.algorithm_run.run(algorithm)
        env.debug(1, "Quality:\n" + self.algorithm_run.quality.repr())

    def repr(self):
        lines = [f"Sequences: {len(self.control_set)}, processed: {self.algorithm_run.n_processed}",
                 "Training set: " + self.training_set.repr(),
                 "Control set: " + self.control_set.repr()]
        if self.algorithm is not None:
            lines.append("Algorithm: " + self.algorithm.repr())
        if self.algorithm_run.n_processed > 0:
            lines.append("Quality:\n" + self.quality().repr())
        return "\n".join(lines)
