"""Compositional transform for raw OTU counts."""

import pandas as pd
import numpy as np
from scipy.stats import gmean


class DataTransformer:
    """Applies the configured transform to the abundance matrix."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def clr_transform(self, abundance: pd.DataFrame, pseudocount: float = 1.0) -> pd.DataFrame:
        """Center log-ratio of each sample's counts.

        Args:
            abundance: Samples x taxa counts
            pseudocount: Added to every count so zeros have a logarithm

        Returns:
            pd.DataFrame: log(x / geometric mean of the sample), rows sum to 0
        """
        counts = np.asarray(abundance.values, dtype=np.float64) + pseudocount
        log_ratio = np.log(counts / gmean(counts, axis=1)[:, None])

        clr = pd.DataFrame(log_ratio, index=abundance.index, columns=abundance.columns)
        self.logger.info(
            f"    CLR transform of {clr.shape[0]} samples: "
            f"mean taxon sd={clr.std().mean():.3f}"
        )
        return clr

    def transform(self, abundance: pd.DataFrame) -> pd.DataFrame:
        """Transform according to config['TRANSFORM'] (None leaves data unchanged)."""
        method = self.config.get('TRANSFORM')
        if method is None:
            self.logger.debug("    Abundance matrix used as provided")
            return abundance
        if abundance.isnull().any().any():
            # CLR needs complete rows
            abundance = abundance.fillna(0)
            self.logger.warning("    Missing counts set to 0 before CLR")
        return self.clr_transform(abundance, self.config.get('CLR_PSEUDOCOUNT', 1.0))
