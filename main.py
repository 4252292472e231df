"""
Run the institution clustering pipeline on a loan application CSV.

The CSV must already be joined with institution names (HMDA LAR columns
lei, respondent_name, derived_ethnicity, action_taken, interest_rate,
loan_amount).

Run:
  python -u main.py --input data/lar_2021_named.csv --output-dir results
"""

import os
import json
import argparse

import pandas as pd

from lender_clustering.config import PipelineConfig
from lender_clustering.data_loader import ApplicationLoader
from lender_clustering.pipeline import LenderClusteringPipeline


DEFAULT_OUTPUT_DIR = "results"
USECOLS = ["lei", "respondent_name", "derived_ethnicity", "action_taken",
           "interest_rate", "loan_amount"]


def build_config(args) -> PipelineConfig:
    """JSON config file first, then explicit command-line overrides."""
    values = {}
    if args.config:
        values.update(PipelineConfig.from_json(args.config).to_dict())
    for key in ("ethnicity", "top_n", "min_applications", "min_k", "max_k",
                "random_state", "interest_rate_threshold", "max_iter", "init"):
        value = getattr(args, key)
        if value is not None:
            values[key] = value
    return PipelineConfig.from_dict(values)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Cluster financial institutions by home loan outcomes"
    )
    parser.add_argument("--input", required=True, help="CSV of loan applications")
    parser.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--config", default=None, help="JSON file with PipelineConfig fields")
    parser.add_argument("--ethnicity", default=None)
    parser.add_argument("--top-n", dest="top_n", type=int, default=None)
    parser.add_argument("--min-applications", dest="min_applications", type=int, default=None)
    parser.add_argument("--min-k", dest="min_k", type=int, default=None)
    parser.add_argument("--max-k", dest="max_k", type=int, default=None)
    parser.add_argument("--random-state", dest="random_state", type=int, default=None)
    parser.add_argument("--interest-rate-threshold", dest="interest_rate_threshold",
                        type=float, default=None)
    parser.add_argument("--max-iter", dest="max_iter", type=int, default=None)
    parser.add_argument("--init", choices=["build", "k-medoids++", "random"], default=None)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = build_config(args)
    os.makedirs(args.output_dir, exist_ok=True)

    df = pd.read_csv(args.input, usecols=USECOLS, low_memory=False)
    records = ApplicationLoader.from_dataframe(df)
    print(f"Loaded {len(records)} applications from {args.input}")

    pipeline = LenderClusteringPipeline(config)
    pipeline.fit(records)

    out = args.output_dir
    pipeline.get_metrics().to_csv(os.path.join(out, "institution_metrics.csv"))
    pipeline.get_merge_tree().to_frame().to_csv(os.path.join(out, "merge_tree.csv"), index=False)
    pipeline.selection.scores.to_csv(os.path.join(out, "k_selection.csv"))
    pipeline.get_assignments().to_csv(os.path.join(out, "assignments.csv"))
    pipeline.get_cluster_summary().to_csv(os.path.join(out, "cluster_info.csv"))

    segments_dir = os.path.join(out, "segments")
    os.makedirs(segments_dir, exist_ok=True)
    for name, segment in pipeline.get_segments().items():
        segment.to_csv(os.path.join(segments_dir, f"{name}.csv"))

    with open(os.path.join(out, "run.json"), "w", encoding="utf-8") as f:
        json.dump({
            "config": config.to_dict(),
            "chosen_k": pipeline.selection.k,
            "votes": pipeline.selection.votes,
            "selection_ambiguous": pipeline.selection.ambiguous,
            "medoids": pipeline.partition.medoids,
            "converged": pipeline.partition.converged,
            "n_removed": pipeline.sanitizer.n_removed,
        }, f, indent=2)

    print("\nMetric summary (partition subset):")
    print(pipeline.get_metric_summary("partition"))
    print("\nCluster summary:")
    print(pipeline.get_cluster_summary())
    print(f"\nResults saved to {out}/")


if __name__ == "__main__":
    main()
