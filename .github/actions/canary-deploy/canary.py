"""Canary rollout evaluation script for GitHub Actions."""

import os
import sys

from canary_sre.cli.main import cli


def main():
    metrics_file = os.environ.get("METRICS_FILE", "canary-metrics.json")
    manual = os.environ.get("MANUAL_PERCENTAGE", "")
    args = ["evaluate"]

    if os.environ.get("SETTINGS_FILE"):
        args += ["--settings", os.environ["SETTINGS_FILE"]]
    if manual:
        print(f"\U0001f527 Manual canary percentage: {manual}%")
        args.append(f"--percentage={manual}")
    else:
        print(f"\U0001f680 Evaluating canary metrics from '{metrics_file}'")
        args += ["--metrics", metrics_file]
    if os.environ.get("ANALYZE_ONLY", "").lower() in ("1", "true", "yes"):
        args.append("--analyze-only")

    code = cli(args)
    if code != 0:
        print("❌ Canary error rate above threshold, rollback recommended")
    sys.exit(code)


if __name__ == "__main__":
    main()
