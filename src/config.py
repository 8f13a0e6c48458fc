"""
Default settings shared by the models, decoders and evaluation jobs.

Every value can be overridden per object through constructor arguments,
and most of them per run through the command line options in main.py.
"""

# Markov chain estimates: each log-probability term is floored at log(ESTIMATE_P_FLOOR)
ESTIMATE_P_FLOOR = 1e-4

# Fallthru chains: fixed fallback probabilities for unseen states
INIT_THRESHOLD = 1e-4
TRANS_THRESHOLD = 1e-2

# Transition tables with more cells than this are stored sparsely (one row per seen tail)
DENSE_TABLE_LIMIT = 1 << 21

# Empirical sequence length distribution
LENGTH_MAX = 20000
LENGTH_WINDOW = 100
LENGTH_TAIL_P = 1e-7

# Decoders refuse sequences longer than this
MAX_SEQ_LENGTH = 50000

# Worker threads (0 = number of CPUs)
THREAD_COUNT = 0

# Progress output and checkpoints
SEQ_PER_SAVE = 100
SEQ_PER_DOT = 20
DOTS_PER_LINE = 50

# EM training
EM_ITERATIONS = 10
ALIGNMENT_THRESHOLDS = (0.99, 0.95, 0.9, 0.5)

# Mixture decoding
MIXTURE_LOG_FLOOR = -1000.0
MIXTURE_MAX_ROUNDS = 10
MIXTURE_TOLERANCE = 1e-4

# Bumped whenever the pickled layout of a snapshot changes
SNAPSHOT_VERSION = 1
