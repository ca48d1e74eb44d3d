#!/usr/bin/env python3
"""
Validate workflow graphs before publishing them.

Usage:
    python scripts/validate_workflow.py                      # bundled config set
    python scripts/validate_workflow.py --config my.yaml     # a config set
    python scripts/validate_workflow.py --definition wf.json --document-type purchase

A config set is validated as a whole (every workflow plus the
config-level checks).  A single definition file holds the exchange format
``{"nodes": [...], "edges": [...]}``.

Exit status is 1 when any error is found; warnings never fail the run.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from bizflow_config import DEFAULT_CONFIG_PATH
from bizflow_config.loader import load_config_file
from bizflow_config.validator import (
    WorkflowValidationResult,
    validate_configuration,
    validate_workflow_definition,
)
from bizflow_kernel.domain.workflow import parse_workflow_definition


def report(result: WorkflowValidationResult) -> int:
    for err in result.errors:
        print(f"  ERROR: {err}")
    for w in result.warnings:
        print(f"  WARNING: {w}")
    if result.is_valid:
        print("OK")
        return 0
    print(f"VALIDATION FAILED ({len(result.errors)} error(s))")
    return 1


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Validate bizflow workflow definitions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Configuration YAML to validate (default: bundled set)",
    )
    parser.add_argument(
        "--definition", type=Path, default=None,
        help="Single workflow definition JSON file",
    )
    parser.add_argument(
        "--document-type", default=None,
        help="Document type whose condition fields the definition may use",
    )
    args = parser.parse_args()

    if args.definition is not None:
        if not args.definition.is_file():
            print(f"Error: file not found: {args.definition}", file=sys.stderr)
            return 1
        print(f"Validating definition: {args.definition}")
        definition = parse_workflow_definition(args.definition.read_text(encoding="utf-8"))
        return report(validate_workflow_definition(definition, args.document_type))

    path = args.config or DEFAULT_CONFIG_PATH
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1
    print(f"Validating config set: {path}")
    config = load_config_file(path)
    print(f"  config_id: {config.config_id}")
    print(f"  version:   {config.version}")
    print(f"  checksum:  {config.checksum[:16]}...")
    return report(validate_configuration(config))


if __name__ == "__main__":
    sys.exit(main())
