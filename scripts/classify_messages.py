"""Audit the learning-mode rule table against a labelled message set."""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engines.learning_modes import LearningMode
from engines.mode_classifier import VARIANTS, LearningModeClassifier

DEFAULT_SAMPLES = Path(__file__).resolve().parent / "mode_samples.json"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--samples",
        type=str,
        default=str(DEFAULT_SAMPLES),
        help="JSON list of {message, expected[, history]} objects (default: scripts/mode_samples.json)",
    )
    parser.add_argument(
        "--rules",
        type=str,
        default=None,
        help="Optional JSON rule-table override",
    )
    parser.add_argument(
        "--variant",
        choices=VARIANTS,
        default=None,
        help="Classifier variant; defaults to the override's variant or 'standard'",
    )
    parser.add_argument(
        "--min-accuracy",
        type=float,
        default=None,
        help="Fail with exit code 1 when accuracy drops below this ratio",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON report",
    )
    return parser


def load_samples(path: str | Path) -> List[Dict[str, Any]]:
    with Path(path).open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, Mapping):
        data = data.get("samples", [])
    if not isinstance(data, list):
        raise ValueError("Samples file must contain a list of objects")
    samples: List[Dict[str, Any]] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, Mapping) or "message" not in entry or "expected" not in entry:
            raise ValueError(f"Sample #{index} needs 'message' and 'expected'")
        expected = LearningMode.parse(entry["expected"])
        if expected is None:
            raise ValueError(f"Sample #{index} has unknown mode {entry['expected']!r}")
        samples.append(
            {
                "message": str(entry["message"]),
                "expected": expected,
                "history": list(entry.get("history") or []),
            }
        )
    return samples


def compute_audit_report(
    samples: Sequence[Mapping[str, Any]],
    classifier: LearningModeClassifier,
) -> Dict[str, Any]:
    """Compare predictions with labels, per mode and overall."""

    per_mode: Dict[str, MutableMapping[str, int]] = {}
    reasons: Counter[str] = Counter()
    mismatches: List[Dict[str, Any]] = []
    matched = 0

    for sample in samples:
        expected: LearningMode = sample["expected"]
        result = classifier.explain(sample["message"], sample.get("history") or ())
        reasons[result.reason.split(":", 2)[0]] += 1
        expected_stats = per_mode.setdefault(expected.value, {"expected": 0, "predicted": 0, "matched": 0})
        predicted_stats = per_mode.setdefault(result.mode.value, {"expected": 0, "predicted": 0, "matched": 0})
        expected_stats["expected"] += 1
        predicted_stats["predicted"] += 1
        if result.mode is expected:
            matched += 1
            expected_stats["matched"] += 1
        else:
            mismatches.append(
                {
                    "message": sample["message"],
                    "expected": expected.value,
                    "predicted": result.mode.value,
                    "reason": result.reason,
                }
            )

    total = len(samples)
    return {
        "variant": classifier.variant,
        "order": [mode.value for mode in classifier.order],
        "total": total,
        "matched": matched,
        "accuracy": matched / total if total else 0.0,
        "reasons": dict(sorted(reasons.items())),
        "modes": {mode: dict(stats) for mode, stats in sorted(per_mode.items())},
        "mismatches": mismatches,
    }


def _write_output(report: dict, output_path: str | None) -> None:
    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if output_path:
        Path(output_path).write_text(payload + "\n", encoding="utf-8")
    print(payload)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        samples = load_samples(args.samples)
        classifier = LearningModeClassifier.from_path(args.rules, variant=args.variant)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    report = compute_audit_report(samples, classifier)
    _write_output(report, args.output)

    if args.min_accuracy is not None and report["accuracy"] < args.min_accuracy:
        print(
            f"Accuracy {report['accuracy']:.2%} fell below the {args.min_accuracy:.0%} threshold.",
            file=sys.stderr,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
