"""Loading and alignment of abundance, metadata and taxonomy tables."""

import pandas as pd
from pathlib import Path
from typing import Optional

from otu_network.exceptions import ConfigurationError, NetworkAnalysisError


def read_table(path: Path, **kwargs) -> pd.DataFrame:
    """Read a delimited table, tab-separated for .tsv/.txt and comma otherwise."""
    path = Path(path)
    sep = '\t' if path.suffix.lower() in ('.tsv', '.txt') else ','
    return pd.read_csv(path, sep=sep, low_memory=False, **kwargs)


class DatasetHandler:
    """Holds the abundance matrix, environmental table and taxonomy of one study."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

        self.abundance = None       # samples x taxa
        self.metadata = None        # samples x all metadata columns
        self.environment = None     # samples x numeric complete variables
        self.taxonomy = None        # taxa x ranks
        self.samples = None

    def load(self, abundance_file: Path, metadata_file: Path,
             taxonomy_file: Optional[Path] = None) -> bool:
        """Load input tables and align them on sample ids.

        Returns:
            bool: True if data loaded successfully
        """
        abundance_file = Path(abundance_file)
        metadata_file = Path(metadata_file)

        if not abundance_file.exists():
            self.logger.error(f"  Abundance table not found: {abundance_file}")
            return False
        if not metadata_file.exists():
            self.logger.error(f"  Metadata table not found: {metadata_file}")
            return False

        abundance = read_table(abundance_file, index_col=0)
        if self.config.get('TAXA_AS_ROWS', False):
            abundance = abundance.T
        self.logger.info(f"  Loaded abundance table: {abundance.shape}")

        metadata = read_table(metadata_file)
        id_column = self.config.get('SAMPLE_ID_COLUMN') or metadata.columns[0]
        metadata = metadata.set_index(id_column)
        self.logger.info(f"  Loaded metadata: {metadata.shape}")

        taxonomy = None
        if taxonomy_file is not None and Path(taxonomy_file).exists():
            taxonomy = read_table(Path(taxonomy_file), index_col=0)
            self.logger.info(f"  Loaded taxonomy: {taxonomy.shape}")
        elif taxonomy_file is not None:
            self.logger.warning(f"  Taxonomy table not found: {taxonomy_file}")

        self.set_data(abundance, metadata, taxonomy)
        return True

    def set_data(self, abundance: pd.DataFrame, metadata: pd.DataFrame,
                 taxonomy: Optional[pd.DataFrame] = None):
        """Align in-memory tables on their shared samples.

        Args:
            abundance: Samples x taxa matrix
            metadata: Samples x metadata columns
            taxonomy: Optional taxa x ranks lookup
        """
        abundance = abundance.apply(pd.to_numeric, errors='coerce')
        abundance.index = abundance.index.astype(str)
        abundance.columns = abundance.columns.astype(str)
        metadata = metadata.copy()
        metadata.index = metadata.index.astype(str)

        meta_ids = set(metadata.index)
        self.samples = [s for s in abundance.index if s in meta_ids]

        if len(self.samples) == 0:
            raise NetworkAnalysisError("No common samples between abundance table and metadata")

        n_dropped = len(abundance) - len(self.samples)
        if n_dropped > 0:
            self.logger.warning(f"  {n_dropped} abundance samples have no metadata")

        self.abundance = abundance.loc[self.samples]
        self.metadata = metadata.loc[self.samples]
        self.environment = self.select_environment(self.metadata)

        if taxonomy is not None:
            taxonomy = taxonomy.copy()
            taxonomy.index = taxonomy.index.astype(str)
        self.taxonomy = taxonomy

        self.logger.info(
            f"  Common samples: {len(self.samples)}, taxa: {self.abundance.shape[1]}, "
            f"environmental variables: {self.environment.shape[1]}"
        )

    def select_environment(self, metadata: pd.DataFrame) -> pd.DataFrame:
        """Keep numeric metadata columns without missing values.

        Args:
            metadata: Samples x metadata columns

        Returns:
            pd.DataFrame: Environmental matrix
        """
        env = metadata.select_dtypes(include='number')
        complete = env.columns[env.notna().all()]
        dropped = [c for c in env.columns if c not in complete]
        if dropped:
            self.logger.debug(f"    Dropped variables with missing values: {dropped}")
        env = env[complete]

        column_range = self.config.get('ENV_COLUMN_RANGE')
        if column_range:
            start, end = column_range
            columns = list(env.columns)
            if start not in columns or end not in columns:
                raise ConfigurationError(
                    f"ENV_COLUMN_RANGE {column_range} not among numeric complete variables {columns}"
                )
            env = env[columns[columns.index(start):columns.index(end) + 1]]

        return env.astype(float)

    def drop(self, samples=(), taxa=()):
        """Remove samples and taxa flagged by the quality filter."""
        if len(samples) > 0:
            keep = [s for s in self.abundance.index if s not in set(samples)]
            self.abundance = self.abundance.loc[keep]
            self.metadata = self.metadata.loc[keep]
            self.environment = self.environment.loc[keep]
            self.samples = keep
        if len(taxa) > 0:
            self.abundance = self.abundance.drop(columns=list(taxa))

    def taxon_names(self, taxa, ranks=('Class', 'Family')) -> pd.Series:
        """Build display names like ``OTU_1(Gammaproteobacteria, Vibrionaceae)``.

        Taxa without taxonomy keep their identifier.
        """
        names = {}
        for taxon in taxa:
            if self.taxonomy is not None and taxon in self.taxonomy.index:
                row = self.taxonomy.loc[taxon]
                labels = [str(row[r]) for r in ranks if r in row.index and pd.notna(row[r])]
                names[taxon] = f"{taxon}({', '.join(labels)})" if labels else taxon
            else:
                names[taxon] = taxon
        return pd.Series(names, name='name')
