#!/usr/bin/env python3
"""
OTU co-occurrence network analysis along an environmental gradient.

This script runs the entire analysis workflow:
1. Quality control of the OTU table and sample clustering
2. Soft-threshold power selection (scale-free fit)
3. Weighted network and topological overlap
4. Module detection and module eigengenes
5. Module-trait and taxon-trait correlations
6. PLS models with VIP ranking and node centrality per module/variable pair

Usage:
    python run_analysis.py --abundance data/otu_table.csv --metadata data/metadata.csv \
        --taxonomy data/taxonomy.csv --env-variables Nox NH4 --power 14

Outputs:
    - output/results/ - Result tables (CSV)
    - output/results/pls/{variable}_{module}/ - VIP rankings and hive tables
    - output/results/networks/ - Cytoscape, VisANT and GraphML files
    - logs/ - Log files
"""

import argparse
import sys
from datetime import datetime

from otu_network.config import (
    ABUNDANCE_FILE, METADATA_FILE, TAXONOMY_FILE, RESULTS_DIR, LOG_DIR, make_config
)
from otu_network.exceptions import ConfigurationError
from otu_network.pipeline import NetworkAnalysisPipeline


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Weighted co-occurrence network analysis of an OTU table"
    )
    parser.add_argument("--abundance", default=str(ABUNDANCE_FILE), help="OTU table (samples x taxa)")
    parser.add_argument("--metadata", default=str(METADATA_FILE), help="Sample metadata table")
    parser.add_argument("--taxonomy", default=str(TAXONOMY_FILE), help="Taxonomy table (optional)")
    parser.add_argument("--output-dir", default=str(RESULTS_DIR), help="Directory for result tables")
    parser.add_argument("--log-dir", default=str(LOG_DIR), help="Directory for log files")
    parser.add_argument("--taxa-as-rows", action="store_true", help="OTU table has taxa as rows")
    parser.add_argument("--clr", action="store_true", help="CLR-transform raw counts first")
    parser.add_argument("--power", type=int, default=None,
                        help="Explicit soft-threshold power (overrides the estimate)")
    parser.add_argument("--min-module-size", type=int, default=None, help="Minimum taxa per module")
    parser.add_argument("--env-variables", nargs="*", default=None, help="Environmental variables to model")
    parser.add_argument("--modules", nargs="*", default=None, help="Modules to model")
    parser.add_argument("--r2-threshold", type=float, default=None, help="Minimum cross-validated PLS R^2")
    parser.add_argument("--overlap-threshold", type=float, default=None,
                        help="TOM threshold for node centrality")
    return parser.parse_args(argv)


def build_config(args) -> dict:
    overrides = {'TAXA_AS_ROWS': args.taxa_as_rows}
    if args.clr:
        overrides['TRANSFORM'] = 'clr'
    if args.power is not None:
        overrides['POWER_OVERRIDE'] = args.power
    if args.min_module_size is not None:
        overrides['MIN_MODULE_SIZE'] = args.min_module_size
    if args.env_variables:
        overrides['ENV_VARIABLES'] = args.env_variables
    if args.modules:
        overrides['MODULES'] = args.modules
    if args.r2_threshold is not None:
        overrides['PLS_R2_THRESHOLD'] = args.r2_threshold
    if args.overlap_threshold is not None:
        overrides['OVERLAP_THRESHOLD'] = args.overlap_threshold
    return make_config(**overrides)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    print("=" * 80)
    print("OTU CO-OCCURRENCE NETWORK ANALYSIS")
    print("=" * 80)
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        return 2

    pipeline = NetworkAnalysisPipeline(
        config=config,
        output_dir=args.output_dir,
        log_dir=args.log_dir
    )

    summary = pipeline.run(args.abundance, args.metadata, args.taxonomy)

    print()
    print("=" * 80)
    if summary['success']:
        print(f"ANALYSIS COMPLETE: power {summary['power']}, {summary['n_modules']} modules, "
              f"{summary['n_models']} adequate PLS models")
    else:
        print(f"ANALYSIS FAILED: {summary.get('error')}")
    print("=" * 80)

    return 0 if summary['success'] else 1


if __name__ == "__main__":
    sys.exit(main())
