#!/usr/bin/env python3
"""Run the scale bridge: keep the ESN00 connected and log stable weights."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scale_bridge.bridge import run_bridge


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Etekcity ESN00 scale bridge")
    parser.add_argument("--config", default="config/scale.example.yaml")
    parser.add_argument("--debug", action="store_true", help="log raw frames")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    # bleak is chatty at DEBUG
    logging.getLogger("bleak").setLevel(logging.INFO)

    try:
        asyncio.run(run_bridge(args.config))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        print(f"Bridge failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
