#!/usr/bin/env python3
"""
Run the Spock mesh reconciler from a source checkout.

    ./scripts/reconcile_mesh.py reconcile --config mesh.yaml
"""

import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from spock_mesh.cli import main

if __name__ == "__main__":
    sys.exit(main())
