"""Shared fixtures: synthetic OTU tables with known module structure."""

import numpy as np
import pandas as pd
import pytest

from otu_network.config import make_config
from otu_network.logger import setup_logger

N_SAMPLES = 20
BLOCK1 = [f"OTU_{i}" for i in range(1, 8)]      # 7 taxa
BLOCK2 = [f"OTU_{i}" for i in range(8, 16)]     # 8 taxa
SAMPLES = [f"S{i:02d}" for i in range(1, N_SAMPLES + 1)]


def two_factors(rng, n):
    """Two centered, unit-variance, exactly uncorrelated factors."""
    f1 = rng.normal(size=n)
    f1 = (f1 - f1.mean()) / f1.std()
    f2 = rng.normal(size=n)
    f2 = f2 - f2.mean()
    f2 = f2 - (f2 @ f1) / (f1 @ f1) * f1
    f2 = f2 / f2.std()
    return f1, f2


def make_two_block_abundance(seed=0, noise=0.15):
    """20 samples x 15 taxa: OTU_1-7 follow one factor, OTU_8-15 another."""
    rng = np.random.default_rng(seed)
    f1, f2 = two_factors(rng, N_SAMPLES)

    columns = {}
    for taxon in BLOCK1:
        columns[taxon] = f1 + noise * rng.normal(size=N_SAMPLES)
    for taxon in BLOCK2:
        columns[taxon] = f2 + noise * rng.normal(size=N_SAMPLES)

    return pd.DataFrame(columns, index=SAMPLES)


@pytest.fixture
def logger(tmp_path):
    log = setup_logger(tmp_path / "logs", run_id=tmp_path.name, console=False)
    yield log
    log.close()


@pytest.fixture
def config():
    return make_config(
        MIN_MODULE_SIZE=5,
        POWER_OVERRIDE=6,
        EXPORT_NETWORKS=True
    )


@pytest.fixture
def abundance():
    return make_two_block_abundance()


@pytest.fixture
def metadata(abundance):
    rng = np.random.default_rng(1)
    return pd.DataFrame({
        'site': ['estuary' if i % 2 else 'ocean' for i in range(N_SAMPLES)],
        'Temperature': rng.normal(15, 2, size=N_SAMPLES),
        'Salinity': abundance[BLOCK2].mean(axis=1).values * 3 + 20,
        'Depth': [np.nan] + list(rng.uniform(1, 10, size=N_SAMPLES - 1)),
    }, index=pd.Index(SAMPLES, name='sample_id'))


@pytest.fixture
def taxonomy():
    taxa = BLOCK1 + BLOCK2
    return pd.DataFrame({
        'Phylum': ['Proteobacteria'] * 7 + ['Bacteroidota'] * 8,
        'Class': ['Gammaproteobacteria'] * 7 + ['Bacteroidia'] * 8,
        'Family': ['Vibrionaceae'] * 7 + ['Flavobacteriaceae'] * 8,
    }, index=pd.Index(taxa, name='OTU'))
