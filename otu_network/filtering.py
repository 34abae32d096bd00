"""Data-quality checks and sample clustering diagnostics."""

import pandas as pd
import numpy as np
from scipy.cluster.hierarchy import linkage, leaves_list

from otu_network.exceptions import DataQualityError


class DataFilter:
    """Flags degenerate samples and taxa before network construction."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def good_samples_taxa(self, abundance: pd.DataFrame) -> dict:
        """Iteratively flag samples and taxa with too many missing values or no variance.

        A taxon is bad when it is observed in fewer than MIN_FRACTION_PRESENT of the
        samples or fewer than MIN_N_SAMPLES samples, or when its observed values are
        constant. A sample is bad when it is observed for too few taxa or is constant
        across taxa. Removing bad samples can make more taxa bad, so flags are
        recomputed until they stop changing.

        Args:
            abundance: Samples x taxa matrix

        Returns:
            dict: good_samples and good_taxa boolean Series, bad_samples and
            bad_taxa lists, all_ok flag
        """
        min_fraction = self.config.get('MIN_FRACTION_PRESENT', 0.5)
        min_samples = self.config.get('MIN_N_SAMPLES', 4)
        min_taxa = self.config.get('MIN_N_TAXA', 4)

        good_samples = pd.Series(True, index=abundance.index)
        good_taxa = pd.Series(True, index=abundance.columns)

        while True:
            data = abundance.loc[good_samples, good_taxa]
            present = data.notna()

            n_present = present.sum(axis=0)
            variance = data.var(axis=0)
            taxa_ok = (
                (n_present >= min_fraction * len(data))
                & (n_present >= min_samples)
                & (variance > 0)
            )

            s_present = present.sum(axis=1)
            s_variance = data.var(axis=1)
            samples_ok = (
                (s_present >= min_fraction * data.shape[1])
                & (s_present >= min_taxa)
                & (s_variance > 0)
            )

            if taxa_ok.all() and samples_ok.all():
                break

            good_taxa.loc[taxa_ok.index[~taxa_ok]] = False
            good_samples.loc[samples_ok.index[~samples_ok]] = False

            if not good_taxa.any() or not good_samples.any():
                break

        bad_samples = good_samples.index[~good_samples].tolist()
        bad_taxa = good_taxa.index[~good_taxa].tolist()

        return {
            'good_samples': good_samples,
            'good_taxa': good_taxa,
            'bad_samples': bad_samples,
            'bad_taxa': bad_taxa,
            'all_ok': not bad_samples and not bad_taxa
        }

    def check(self, abundance: pd.DataFrame) -> dict:
        """Run the quality filter and apply the ON_DEGENERATE policy.

        Raises:
            DataQualityError: If degenerate data is found and ON_DEGENERATE is 'raise'
        """
        result = self.good_samples_taxa(abundance)

        if result['all_ok']:
            self.logger.info(
                f"    All {abundance.shape[0]} samples and {abundance.shape[1]} taxa pass quality checks"
            )
            return result

        self.logger.warning(
            f"    Degenerate data: {len(result['bad_samples'])} samples, "
            f"{len(result['bad_taxa'])} taxa"
        )
        self.logger.debug(f"    Bad samples: {result['bad_samples']}")
        self.logger.debug(f"    Bad taxa: {result['bad_taxa']}")

        if self.config.get('ON_DEGENERATE', 'drop') == 'raise':
            raise DataQualityError(result['bad_samples'], result['bad_taxa'])

        return result

    def cluster_samples(self, abundance: pd.DataFrame, environment: pd.DataFrame = None) -> dict:
        """Ward clustering of samples on Euclidean distance for outlier inspection.

        Args:
            abundance: Samples x taxa matrix
            environment: Optional samples x variables table to rescale to [0, 1]

        Returns:
            dict: linkage matrix, leaf order, merge heights and scaled traits
        """
        data = abundance.fillna(abundance.mean())
        tree = linkage(data.values, method='ward', metric='euclidean')
        order = [abundance.index[i] for i in leaves_list(tree)]

        heights = tree[:, 2]
        self.logger.info(
            f"    Sample tree: max height {heights.max():.2f}, "
            f"median height {np.median(heights):.2f}"
        )

        trait_levels = None
        if environment is not None and environment.shape[1] > 0:
            span = environment.max() - environment.min()
            trait_levels = (environment - environment.min()) / span.replace(0, np.nan)
            trait_levels = trait_levels.loc[order]

        return {
            'linkage': tree,
            'order': order,
            'heights': pd.Series(heights, name='height'),
            'trait_levels': trait_levels
        }
