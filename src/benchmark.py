import argparse

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.metrics import classification_report, confusion_matrix

import snapshot

METRICS = ["symbol_spec", "symbol_sens", "symbol_acp", "symbol_cc", "region_spec", "region_sens"]


def quality_frame(cv):
    """
    Per-fold, per-state quality metrics of a cross-validation job as a DataFrame.
    Runs that have not decoded anything are left out.
    """
    rows = []
    for r, run in enumerate(cv.runs):
        if run.quality.n_seq == 0:
            continue
        for state, name in enumerate(run.quality.hidden_states):
            row = {"fold": r // 2 + 1,
                   "set": "training" if r % 2 == 0 else "control",
                   "state": name,
                   "n_seq": run.quality.n_seq,
                   "n_denied": run.quality.n_denied}
            row.update(run.quality.as_dict(state))
            rows.append(row)
    return pd.DataFrame(rows, columns=["fold", "set", "state", "n_seq", "n_denied"] + METRICS)


def plot_quality(df, output_prefix):
    """Grouped bars of the mean control-set metrics for every hidden state."""
    control = df[df["set"] == "control"]
    if control.empty:
        print("No control runs to plot.")
        return None
    means = control.groupby("state")[METRICS].mean()

    x = np.arange(len(METRICS))
    width = 0.8 / len(means)
    plt.figure(figsize=(10, 5))
    for k, (state, values) in enumerate(means.iterrows()):
        plt.bar(x + k * width, values.values, width, label=f"State '{state}'", alpha=0.8)
    plt.xticks(x + width * (len(means) - 1) / 2, METRICS, rotation=30, ha='right')
    plt.ylim(0, 1)
    plt.ylabel('Mean over folds')
    plt.title('Cross-validation quality (control sets)')
    plt.legend()
    plt.tight_layout()
    filename = f"{output_prefix}_quality.png"
    plt.savefig(filename)
    plt.close()
    print(f"Quality plot saved to {filename}")
    return filename


def evaluate_cv(snapshot_file, output_prefix):
    print(f"Loading cross-validation from {snapshot_file}...")
    cv = snapshot.load_object(snapshot_file)
    df = quality_frame(cv)
    df.to_csv(f"{output_prefix}_quality.tsv", sep='\t', index=False)
    print(df.to_string(index=False))
    plot_quality(df, output_prefix)
    return df


def symbol_labels(preds):
    """Flattens reference and predicted label strings of decoded sequences."""
    decoded = preds[preds['Predicted'].str.len() > 0]
    y_true = list("".join(decoded['Reference']))
    y_pred = list("".join(decoded['Predicted']))
    return y_true, y_pred


def evaluate_predictions(prediction_file, output_prefix):
    """
    Symbol-level confusion matrix of a predictions TSV (see main.py predict).
    """
    print("Loading data...")
    preds = pd.read_csv(prediction_file, sep='\t', keep_default_na=False, dtype=str)
    refused = int((preds['Predicted'].str.len() == 0).sum())
    print(f"Sequences: {len(preds)}, refused: {refused}")

    y_true, y_pred = symbol_labels(preds)
    if not y_true:
        print("No decoded sequences.")
        return None
    labels = sorted(set(y_true) | set(y_pred))

    print("\nClassification Report:")
    print(classification_report(y_true, y_pred, labels=labels, zero_division=0))

    cm = confusion_matrix(y_true, y_pred, labels=labels)
    plt.figure(figsize=(5, 4))
    plt.imshow(cm, cmap='Blues')
    plt.colorbar()
    for i in range(len(labels)):
        for j in range(len(labels)):
            plt.text(j, i, str(cm[i, j]), ha='center', va='center')
    plt.xticks(range(len(labels)), labels)
    plt.yticks(range(len(labels)), labels)
    plt.xlabel('Predicted')
    plt.ylabel('Actual')
    plt.title('Confusion Matrix')
    plt.tight_layout()
    filename = f"{output_prefix}_confusion_matrix.png"
    plt.savefig(filename)
    plt.close()
    print(f"Confusion matrix saved to {filename}")
    return cm


def main(argv=None):
    parser = argparse.ArgumentParser(description="Benchmark sequence labeling")
    parser.add_argument('--predictions', help='Prediction TSV file')
    parser.add_argument('--cv', help='Cross-validation snapshot')
    parser.add_argument('--output', required=True, help='Output prefix for tables and plots')

    args = parser.parse_args(argv)
    if not args.predictions and not args.cv:
        parser.error("either --predictions or --cv is required")

    if args.predictions:
        evaluate_predictions(args.predictions, args.output)
    if args.cv:
        evaluate_cv(args.cv, args.output)


if __name__ == "__main__":
    main()
