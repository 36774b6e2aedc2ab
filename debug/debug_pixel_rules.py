#!/usr/bin/env python3
"""Show which pixel rule fires for each image file given on the command line."""

import json
import sys
from pathlib import Path

from autoalt.classifier import explain

if len(sys.argv) < 2:
    print("Usage: debug_pixel_rules.py IMAGE [IMAGE ...]")
    sys.exit(1)

for arg in sys.argv[1:]:
    path = Path(arg)
    if not path.exists():
        print(f"❌ Not found: {path}")
        continue

    print("=" * 70)
    print(f"{path.name}")
    print("=" * 70)
    try:
        details = explain(path.read_bytes(), filename=path.name)
    except Exception as e:
        print(f"⚠️  Could not decode: {e}")
        continue

    side = "interior" if details["interior"] else "exterior"
    print(f"  Gate: {details['interior_votes']} interior votes → {side}")
    print(f"  Rule: {details['rule']}")
    print(f"  Descriptor: {details['descriptor']}")
    print(f"  Environment: {details['environment'] or '-'}")
    print("  Stats:")
    print(json.dumps({k: v for k, v in details.items() if k not in {"rule", "descriptor", "environment"}}, indent=2))
