"""
Complete gene labeling pipeline demo (synthetic only).

This script keeps synthetic inputs under data/fake/demo and writes
all outputs to results/fake/demo/latest so they stay separate from
real data and results.
"""

import sys
import subprocess
from pathlib import Path

FAKE_DATA_DIR = Path("data/fake/demo")
FAKE_RESULTS_DIR = Path("results/fake/demo/latest")
MAIN_SCRIPT = Path("src/main.py")
BENCHMARK_SCRIPT = Path("src/benchmark.py")


def run_command(cmd, description):
    """Execute a shell command and handle errors."""
    print(f"\n{'=' * 60}")
    print(description)
    print(f"{'=' * 60}")
    result = subprocess.run(cmd, shell=True, capture_output=True, text=True)
    if result.returncode != 0:
        print(f"ERROR: {description} failed")
        print(result.stderr)
        sys.exit(1)
    print(result.stdout)
    return result


def prepare_demo_dirs():
    """Ensure synthetic data/results folders exist and are clean."""
    FAKE_DATA_DIR.mkdir(parents=True, exist_ok=True)
    FAKE_RESULTS_DIR.mkdir(parents=True, exist_ok=True)
    # wipe previous demo outputs to avoid mixing runs
    for pattern in ("*.png", "*.tsv", "*.gz", "*.gz~"):
        for path in FAKE_RESULTS_DIR.glob(pattern):
            path.unlink()


def main():
    """Run the gene labeling pipeline on synthetic data."""
    print("\nGene labeling demo (synthetic) starting...")
    prepare_demo_dirs()

    train_fasta = FAKE_DATA_DIR / "train.fasta"
    test_fasta = FAKE_DATA_DIR / "test.fasta"
    model_path = FAKE_RESULTS_DIR / "model.gz"
    predictions_path = FAKE_RESULTS_DIR / "predictions.tsv"
    cv_path = FAKE_RESULTS_DIR / "cv.gz"
    mixture_job = FAKE_RESULTS_DIR / "em.gz"
    mixture_path = FAKE_RESULTS_DIR / "mixture.gz"

    run_command(
        f"python {MAIN_SCRIPT} simulate --count 300 --seed 1 --output {train_fasta}",
        "[Step 1/7] Simulating training genes",
    )
    run_command(
        f"python {MAIN_SCRIPT} simulate --count 60 --seed 2 --output {test_fasta}",
        "[Step 2/7] Simulating test genes",
    )
    run_command(
        f"python {MAIN_SCRIPT} train --input {train_fasta} --algorithm gene --order 4 --output {model_path}",
        "[Step 3/7] Training the gene decoder",
    )
    run_command(
        f"python {MAIN_SCRIPT} predict --input {test_fasta} --model {model_path} --output {predictions_path}",
        "[Step 4/7] Decoding test genes",
    )
    run_command(
        f"python {MAIN_SCRIPT} cv --input {train_fasta} --algorithm gene --order 4 --folds 3 --seed 3 "
        f"--output {cv_path}",
        "[Step 5/7] Cross-validating the gene decoder",
    )
    run_command(
        f"python {MAIN_SCRIPT} em --input {train_fasta} --mode incremental --order 3 --iterations 3 "
        f"--max-models 3 --seed 4 --output {mixture_job} --mixture-output {mixture_path}",
        "[Step 6/7] Fitting a mixture of chains",
    )
    run_command(
        f"python {BENCHMARK_SCRIPT} --predictions {predictions_path} --cv {cv_path} "
        f"--output {FAKE_RESULTS_DIR / 'benchmark'}",
        "[Step 7/7] Generating benchmark tables and plots",
    )

    print("\nPipeline completed.")
    print(f"  Synthetic inputs: {FAKE_DATA_DIR}")
    print(f"  Synthetic outputs: {FAKE_RESULTS_DIR}")
    print("Check the prediction file for per-gene exon/intron labels.")
    print("View benchmark PNGs for model performance assessment.")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        print(f"\nPipeline failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
