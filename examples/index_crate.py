#!/usr/bin/env python3
"""
Index a Rust crate with rsmap and print its relationship tables.

Runs the full generate pipeline (writing .codebase-index/ into the crate),
then shows the trait map, conversion chains, module dependencies and type
hotspots as pandas DataFrames.

Usage:
    python index_crate.py [crate_directory]

Defaults to the sample crate used by the test suite.

Dependencies:
    pip install rsmap
"""

import sys
from pathlib import Path

import pandas as pd

from rsmap import generate


def main():
    if len(sys.argv) > 1:
        crate_root = Path(sys.argv[1]).resolve()
    else:
        crate_root = Path(__file__).resolve().parent.parent / "tests" / "fixtures" / "sample_crate"

    if not crate_root.is_dir():
        print(f"Error: {crate_root} is not a directory")
        sys.exit(1)

    result = generate(crate_root, verbose=True)
    frames = result.graph.to_frames()

    pd.set_option("display.width", 120)
    for name in ("trait_impls", "conversions", "module_deps"):
        print(f"\n{name} ({len(frames[name])} rows)")
        print(frames[name].to_string(index=False))

    print("\nConversion chains:")
    for chain in result.graph.conversion_chains():
        print(f"  {chain}")

    print("\nHotspots:")
    for type_name, count in result.stats["hotspots"]:
        print(f"  {type_name}: {count} modules")


if __name__ == "__main__":
    main()
