import argparse
import os
import random
import sys

import numpy as np

import config
import snapshot
from em import DecrementalEMAlgorithm, EMAlgorithm, IncrementalEMAlgorithm, SelectionMethod
from env import Env
from evaluation import CrossValidation
from fallthru import Approximation, Strategy
from mixture import ChainMixture
from mixture_algorithm import MixtureAlgorithm
from sequences import decode, read_fasta, write_fasta
from simulator import generate_dataset
from states import GENE_COMPLETE, GENE_HIDDEN, GENE_OBSERVED, StatesDescription
from threaded import ThreadedAlgorithm
from transforms import GeneTransformAlgorithm
from viterbi import FallthruAlgorithm, GeneViterbiAlgorithm, ViterbiAlgorithm


def load_dataset(args):
    states = StatesDescription.create(args.observed, args.hidden, args.complete or None)
    print(f"Loading sequences from {args.input}...")
    dataset = read_fasta(args.input, states, getattr(args, "labels", None))
    print(f"Loaded {dataset.repr()}")
    return dataset


def build_algorithm(args, states):
    """
    Creates an untrained decoder from the command line options.
    """
    if args.algorithm == "viterbi":
        return ViterbiAlgorithm.create(args.dep_length, args.order, states)
    if args.algorithm == "gene":
        return GeneViterbiAlgorithm.create(args.order, states, validate_cds=not args.no_validate_cds)
    if args.algorithm == "transform":
        return GeneTransformAlgorithm.create(args.order, states)
    if args.algorithm == "fallthru":
        approx = Approximation(args.order, args.min_order, Strategy(args.strategy),
                               args.init_threshold, args.trans_threshold)
        return FallthruAlgorithm(approx, states)
    if args.algorithm == "mixture":
        if not args.mixture:
            raise ValueError("--mixture is required for the mixture algorithm")
        return MixtureAlgorithm(snapshot.load_object(args.mixture),
                                validate_cds=not args.no_validate_cds)
    raise ValueError(f"Unknown algorithm: {args.algorithm}")


def simulate(args):
    """
    Generate synthetic exon/intron genes and save them as complete-state FASTA.
    """
    rng = random.Random(args.seed)
    print(f"Simulating {args.count} genes...")
    dataset = generate_dataset(args.count, rng, exons=(args.min_exons, args.max_exons),
                               gc_target=args.gc)
    n = write_fasta(dataset, args.output)
    print(f"Saved {n} sequences to {args.output}")


def train(args, env):
    dataset = load_dataset(args)
    algorithm = build_algorithm(args, dataset.states)
    env.debug(1, algorithm.repr())
    print("Training...")
    algorithm.train_set(dataset)
    if args.clear:
        algorithm = algorithm.duplicate_hyperparameters_only()
    print(f"Saving model to {args.output}...")
    snapshot.save_object(algorithm, args.output)
    print("Done.")


def predict(args, env):
    """
    Decode every sequence of a FASTA set with a saved model and write a TSV
    with the reference and predicted labels (empty when refused).
    """
    print(f"Loading model from {args.model}...")
    algorithm = snapshot.load_object(args.model)
    dataset = load_dataset(args)

    print("Running decoding...")
    estimates = ThreadedAlgorithm(algorithm, env).run_set(dataset)
    hidden = dataset.states.hidden

    print(f"Saving results to {args.output}...")
    with open(args.output, 'w') as f:
        f.write("SeqID\tLength\tReference\tPredicted\n")
        for i in range(len(dataset)):
            predicted = estimates.hidden(i)
            pred_text = decode(predicted, hidden) if predicted is not None else ""
            f.write(f"{dataset.id(i)}\t{len(dataset.observed(i))}\t"
                    f"{decode(dataset.hidden(i), hidden)}\t{pred_text}\n")
    print(f"Refused: {estimates.n_denied()} of {len(estimates)}")
    print("Done.")


def cross_validate(args, env):
    cv = None
    if args.resume and os.path.exists(args.output):
        print(f"Resuming cross-validation from {args.output}...")
        cv = snapshot.load_object(args.output)
    if cv is None:
        dataset = load_dataset(args)
        cv = CrossValidation(dataset, args.folds, np.random.default_rng(args.seed))
        cv.skip_training = not args.evaluate_training
        cv.sequences_per_save = args.seq_per_save
    if cv.algorithm is None:
        cv.attach_algorithm(build_algorithm(args, cv.dataset.states))
    cv.set_save_file(args.output)
    cv.run(env)
    print("\nMean quality on control sets:")
    print(cv.mean_control().repr())


def fit_mixture(args, env):
    if args.resume and os.path.exists(args.output):
        print(f"Resuming EM from {args.output}...")
        job = snapshot.load_object(args.output)
    else:
        dataset = load_dataset(args)
        rng = np.random.default_rng(args.seed)
        common = dict(n_iterations=args.iterations, stochastic=args.stochastic,
                      save_template=args.template, rng=rng)
        if args.mode == "incremental":
            mixture = ChainMixture(1, args.order, dataset.states)
            job = IncrementalEMAlgorithm(mixture, dataset, selection_method=SelectionMethod(args.selection),
                                         select_weights=args.select_weights,
                                         index_offset=args.index_offset,
                                         value_offset=args.value_offset,
                                         max_models=args.max_models, **common)
        elif args.mode == "decremental":
            mixture = ChainMixture(args.components, args.order, dataset.states)
            job = DecrementalEMAlgorithm(mixture, dataset, min_models=args.min_models, **common)
        else:
            mixture = ChainMixture(args.components, args.order, dataset.states)
            job = EMAlgorithm(mixture, dataset, **common)
        mixture.random_fill(dataset, rng)
    job.set_save_file(args.output)
    job.run(env)
    if args.mixture_output:
        snapshot.save_object(job.mixture, args.mixture_output)
        print(f"Saved mixture to {args.mixture_output}")


def show(args):
    obj = snapshot.load_object(args.file)
    if hasattr(obj, "repr"):
        print(obj.repr())
    else:
        print(repr(obj))


def add_dataset_options(parser, labels=True):
    parser.add_argument('--input', required=True, help='FASTA file of labeled sequences')
    if labels:
        parser.add_argument('--labels', help='FASTA file of hidden labels (if --input holds observed states only)')
    parser.add_argument('--observed', default=GENE_OBSERVED, help='Observed states alphabet')
    parser.add_argument('--hidden', default=GENE_HIDDEN, help='Hidden states alphabet')
    parser.add_argument('--complete', default=GENE_COMPLETE, help='Complete states alphabet ("" for none)')


def add_algorithm_options(parser):
    parser.add_argument('--algorithm', choices=['viterbi', 'gene', 'transform', 'fallthru', 'mixture'], default='gene')
    parser.add_argument('--order', type=int, default=5, help='Markov chain order')
    parser.add_argument('--dep-length', type=int, default=1, help='Dependency length (viterbi)')
    parser.add_argument('--min-order', type=int, default=2, help='Minimal order (fallthru)')
    parser.add_argument('--strategy', choices=[s.value for s in Strategy], default='mean')
    parser.add_argument('--init-threshold', type=float, default=config.INIT_THRESHOLD)
    parser.add_argument('--trans-threshold', type=float, default=config.TRANS_THRESHOLD)
    parser.add_argument('--no-validate-cds', action='store_true',
                        help='Do not require the exon length to be a multiple of three')
    parser.add_argument('--mixture', help='Saved mixture (mixture algorithm)')


def main(argv=None):
    parser = argparse.ArgumentParser(description="Sequence labeling with variable-order Markov chains")
    parser.add_argument('--threads', type=int, default=config.THREAD_COUNT, help='Worker threads (0 = all CPUs)')
    parser.add_argument('-v', '--verbose', type=int, default=1, help='Verbosity level')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Simulate command
    sim_parser = subparsers.add_parser('simulate', help='Simulate exon/intron genes')
    sim_parser.add_argument('--output', required=True, help='Output FASTA file')
    sim_parser.add_argument('--count', type=int, default=200, help='Number of genes')
    sim_parser.add_argument('--min-exons', type=int, default=1)
    sim_parser.add_argument('--max-exons', type=int, default=4)
    sim_parser.add_argument('--gc', type=float, default=0.55, help='Exon GC target')
    sim_parser.add_argument('--seed', type=int, default=None)

    # Train command
    train_parser = subparsers.add_parser('train', help='Train a decoder')
    add_dataset_options(train_parser)
    add_algorithm_options(train_parser)
    train_parser.add_argument('--output', required=True, help='Output model file')
    train_parser.add_argument('--clear', action='store_true', help='Save hyperparameters only')

    # Predict command
    predict_parser = subparsers.add_parser('predict', help='Decode sequences with a saved model')
    add_dataset_options(predict_parser)
    predict_parser.add_argument('--model', required=True, help='Trained model file')
    predict_parser.add_argument('--output', required=True, help='Output results file (TSV)')

    # Cross-validation command
    cv_parser = subparsers.add_parser('cv', help='Cross-validate a decoder')
    add_dataset_options(cv_parser)
    add_algorithm_options(cv_parser)
    cv_parser.add_argument('--output', required=True, help='Cross-validation snapshot')
    cv_parser.add_argument('--folds', type=int, default=5)
    cv_parser.add_argument('--resume', action='store_true', help='Continue from an existing snapshot')
    cv_parser.add_argument('--evaluate-training', action='store_true', help='Also decode training sets')
    cv_parser.add_argument('--seq-per-save', type=int, default=config.SEQ_PER_SAVE)
    cv_parser.add_argument('--seed', type=int, default=None)

    # EM command
    em_parser = subparsers.add_parser('em', help='Fit a mixture of Markov chains')
    add_dataset_options(em_parser)
    em_parser.add_argument('--output', required=True, help='EM job snapshot')
    em_parser.add_argument('--mixture-output', help='Final mixture file')
    em_parser.add_argument('--mode', choices=['ordinary', 'incremental', 'decremental'], default='ordinary')
    em_parser.add_argument('--components', type=int, default=3)
    em_parser.add_argument('--order', type=int, default=5)
    em_parser.add_argument('--iterations', type=int, default=config.EM_ITERATIONS)
    em_parser.add_argument('--stochastic', action='store_true')
    em_parser.add_argument('--template', help='Per-round mixture files, e.g. mix-{n}-{i}.gz')
    em_parser.add_argument('--max-models', type=int, default=3)
    em_parser.add_argument('--min-models', type=int, default=1)
    em_parser.add_argument('--selection', choices=[m.value for m in SelectionMethod], default='mean')
    em_parser.add_argument('--select-weights', action='store_true')
    em_parser.add_argument('--index-offset', type=int, default=0)
    em_parser.add_argument('--value-offset', type=float, default=0.0)
    em_parser.add_argument('--resume', action='store_true')
    em_parser.add_argument('--seed', type=int, default=None)

    # Show command
    show_parser = subparsers.add_parser('show', help='Print a saved object')
    show_parser.add_argument('file')

    args = parser.parse_args(argv)

    with Env(args.threads, args.verbose) as env:
        try:
            if args.command == 'simulate':
                simulate(args)
            elif args.command == 'train':
                train(args, env)
            elif args.command == 'predict':
                predict(args, env)
            elif args.command == 'cv':
                cross_validate(args, env)
            elif args.command == 'em':
                fit_mixture(args, env)
            elif args.command == 'show':
                show(args)
            else:
                parser.print_help()
        except KeyboardInterrupt:
            env.error(0, "\nInterrupted by user")
            return 130
        except (ValueError, snapshot.SnapshotError) as e:
            env.error(0, f"Error: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
