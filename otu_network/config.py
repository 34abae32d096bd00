"""Configuration for the OTU co-occurrence network pipeline."""

from pathlib import Path

from otu_network.exceptions import ConfigurationError

# Directories
BASE_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = BASE_DIR / "data"
OUTPUT_DIR = BASE_DIR / "output"
RESULTS_DIR = OUTPUT_DIR / "results"
LOG_DIR = BASE_DIR / "logs"

# Input files (samples x taxa unless TAXA_AS_ROWS)
ABUNDANCE_FILE = DATA_DIR / "otu_table.csv"
METADATA_FILE = DATA_DIR / "metadata.csv"
TAXONOMY_FILE = DATA_DIR / "taxonomy.csv"
TAXA_AS_ROWS = False
SAMPLE_ID_COLUMN = None             # Metadata column holding sample ids (None = first column)

# Input handling
TRANSFORM = None                    # 'clr' for raw counts, None if already transformed
CLR_PSEUDOCOUNT = 1.0
ENV_COLUMN_RANGE = None             # e.g. ('Temperature', 'NH4'), inclusive
ON_DEGENERATE = 'drop'              # 'drop' or 'raise'
MIN_FRACTION_PRESENT = 0.5          # Drop taxa/samples with more missing than this
MIN_N_SAMPLES = 4
MIN_N_TAXA = 4

# Soft threshold
POWERS = list(range(1, 11)) + list(range(12, 51, 2))
SFT_R2_CUT = 0.85                   # Signed scale-free fit R^2 a power must exceed
SFT_N_BREAKS = 10
POWER_OVERRIDE = None               # Explicit power when no candidate reaches SFT_R2_CUT
BLOCK_SIZE = 1000                   # Taxa per block for connectivity

# Module detection
LINKAGE_METHOD = 'average'          # 'average' or 'ward'
MIN_MODULE_SIZE = 30
CUT_HEIGHT = None                   # None = 99% of the dendrogram height range
SPLIT_GAP = 0.25
MERGE_CUT_HEIGHT = 0.15             # Merge modules with eigengene cor >= 0.85; None disables

# Trait association
P_ADJUST_METHOD = None              # e.g. 'fdr_bh'; None reports raw p-values only
PAIR_P_THRESHOLD = 0.05

# PLS / VIP
PLS_R2_THRESHOLD = 0.5
PLS_R2_TOLERANCE = 0.01            # Fewest components within this of the best R^2; 0 = strict maximum
PLS_MAX_COMPONENTS = None
PLS_SCALE = True
ENV_VARIABLES = []                  # Variables to model; empty = every pair below PAIR_P_THRESHOLD
MODULES = []                        # Modules to model; empty = every module
PLS_PAIRS = []                      # Explicit (module, variable) pairs; override MODULES/ENV_VARIABLES

# Node centrality / export
OVERLAP_THRESHOLD = 0.5
EXPORT_THRESHOLD = 0.5
HIVE_TOP_N = 10
HIVE_MIN_GS = 0.5
HIVE_MIN_VIP = 0.5
EXPORT_NETWORKS = True
EXPORT_ISOLATED = False             # Keep nodes without edges in Cytoscape node files

# Configuration dictionary for pipeline components
CONFIG = {
    # Input
    'TAXA_AS_ROWS': TAXA_AS_ROWS,
    'SAMPLE_ID_COLUMN': SAMPLE_ID_COLUMN,
    'TRANSFORM': TRANSFORM,
    'CLR_PSEUDOCOUNT': CLR_PSEUDOCOUNT,
    'ENV_COLUMN_RANGE': ENV_COLUMN_RANGE,
    'ON_DEGENERATE': ON_DEGENERATE,
    'MIN_FRACTION_PRESENT': MIN_FRACTION_PRESENT,
    'MIN_N_SAMPLES': MIN_N_SAMPLES,
    'MIN_N_TAXA': MIN_N_TAXA,

    # Soft threshold
    'POWERS': POWERS,
    'SFT_R2_CUT': SFT_R2_CUT,
    'SFT_N_BREAKS': SFT_N_BREAKS,
    'POWER_OVERRIDE': POWER_OVERRIDE,
    'BLOCK_SIZE': BLOCK_SIZE,

    # Modules
    'LINKAGE_METHOD': LINKAGE_METHOD,
    'MIN_MODULE_SIZE': MIN_MODULE_SIZE,
    'CUT_HEIGHT': CUT_HEIGHT,
    'SPLIT_GAP': SPLIT_GAP,
    'MERGE_CUT_HEIGHT': MERGE_CUT_HEIGHT,

    # Traits
    'P_ADJUST_METHOD': P_ADJUST_METHOD,
    'PAIR_P_THRESHOLD': PAIR_P_THRESHOLD,

    # PLS
    'PLS_R2_THRESHOLD': PLS_R2_THRESHOLD,
    'PLS_R2_TOLERANCE': PLS_R2_TOLERANCE,
    'PLS_MAX_COMPONENTS': PLS_MAX_COMPONENTS,
    'PLS_SCALE': PLS_SCALE,
    'ENV_VARIABLES': ENV_VARIABLES,
    'MODULES': MODULES,
    'PLS_PAIRS': PLS_PAIRS,

    # Centrality / export
    'OVERLAP_THRESHOLD': OVERLAP_THRESHOLD,
    'EXPORT_THRESHOLD': EXPORT_THRESHOLD,
    'HIVE_TOP_N': HIVE_TOP_N,
    'HIVE_MIN_GS': HIVE_MIN_GS,
    'HIVE_MIN_VIP': HIVE_MIN_VIP,
    'EXPORT_NETWORKS': EXPORT_NETWORKS,
    'EXPORT_ISOLATED': EXPORT_ISOLATED
}


def make_config(**overrides) -> dict:
    """Return a copy of CONFIG with overrides applied and validated.

    Args:
        **overrides: Upper-case config keys and their values

    Returns:
        dict: Validated configuration
    """
    config = dict(CONFIG)
    unknown = set(overrides) - set(config)
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")
    config.update(overrides)
    validate_config(config)
    return config


def validate_config(config: dict):
    """Check parameter types and ranges.

    Raises:
        ConfigurationError: If any parameter is out of range
    """
    powers = config['POWERS']
    if not powers or any(int(p) != p or p < 1 for p in powers):
        raise ConfigurationError(f"POWERS must be positive integers, got {powers}")

    override = config.get('POWER_OVERRIDE')
    if override is not None and (int(override) != override or override < 1):
        raise ConfigurationError(f"POWER_OVERRIDE must be a positive integer, got {override}")

    if config['LINKAGE_METHOD'] not in ('average', 'ward'):
        raise ConfigurationError(
            f"LINKAGE_METHOD must be 'average' or 'ward', got {config['LINKAGE_METHOD']!r}"
        )

    if config['ON_DEGENERATE'] not in ('drop', 'raise'):
        raise ConfigurationError(
            f"ON_DEGENERATE must be 'drop' or 'raise', got {config['ON_DEGENERATE']!r}"
        )

    if config.get('TRANSFORM') not in (None, 'clr'):
        raise ConfigurationError(f"TRANSFORM must be None or 'clr', got {config['TRANSFORM']!r}")

    if config['MIN_MODULE_SIZE'] < 1:
        raise ConfigurationError("MIN_MODULE_SIZE must be >= 1")

    for key in ('SFT_R2_CUT', 'OVERLAP_THRESHOLD', 'EXPORT_THRESHOLD', 'MIN_FRACTION_PRESENT'):
        if not 0 <= config[key] <= 1:
            raise ConfigurationError(f"{key} must be in [0, 1], got {config[key]}")

    merge = config.get('MERGE_CUT_HEIGHT')
    if merge is not None and not 0 <= merge <= 2:
        raise ConfigurationError(f"MERGE_CUT_HEIGHT must be in [0, 2], got {merge}")

    max_comp = config.get('PLS_MAX_COMPONENTS')
    if max_comp is not None and max_comp < 1:
        raise ConfigurationError("PLS_MAX_COMPONENTS must be >= 1")
