"""agent_test_harness.py

Lightweight smoke-check for local development and automated agents.
It imports the FastAPI `app` and `tutor` to ensure key modules load, prints
the API routes and runs a few messages through mode detection.

With ``--url`` it also probes a running server (``/health`` and
``/learning/detect-mode``); without it no server or LLM endpoint is needed.
"""
import argparse
import importlib
import sys
from pathlib import Path

import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SAMPLE_MESSAGES = (
    "Why is the sky blue?",
    "Can you help me with my homework: 12 x 4",
    "Quiz me on fractions",
    "Let's review what we learned yesterday",
)


def _probe(base_url, timeout):
    base_url = base_url.rstrip('/')
    health = requests.get(f"{base_url}/health", timeout=timeout)
    health.raise_for_status()
    print(f"GET /health -> {health.status_code} ready={health.json().get('ready')}")
    detect = requests.post(
        f"{base_url}/learning/detect-mode",
        json={"message": SAMPLE_MESSAGES[0]},
        timeout=timeout,
    )
    detect.raise_for_status()
    data = detect.json()
    print(f"POST /learning/detect-mode -> {data.get('detected_mode')} via {data.get('recommended_provider')}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Smoke-check the learning engine")
    parser.add_argument('--url', default=None, help='Optional base URL of a running server to probe')
    parser.add_argument('--timeout', type=float, default=10.0, help='HTTP timeout for --url probes')
    args = parser.parse_args(argv)

    errors = []
    try:
        app = importlib.import_module('app')
        title = getattr(app, 'app').title if getattr(app, 'app', None) else 'unknown'
        print(f"Loaded FastAPI app: {title}")
        routes = [r.path for r in getattr(app, 'app').routes]
        print(f"Routes ({len(routes)}):")
        for p in sorted(routes):
            print("  ", p)
    except Exception as e:
        errors.append(('app import', e))

    try:
        tutor = importlib.import_module('tutor')
        engine = tutor.LearningTutor()
        print(f"Provider status (no providers injected): {engine.provider_status()}")
        for message in SAMPLE_MESSAGES:
            detection = engine.detect_mode(message)
            print(f"  {detection.mode.value:<12} {detection.reason:<32} {message}")
    except Exception as e:
        errors.append(('tutor import', e))

    if args.url:
        try:
            _probe(args.url, args.timeout)
        except requests.RequestException as e:
            errors.append(('live probe', e))

    if errors:
        print('\nERRORS:')
        for name, exc in errors:
            print(f" - {name}: {type(exc).__name__}: {exc}")
        sys.exit(2)

    print('\nSMOKE CHECK: OK')


if __name__ == '__main__':
    main()
