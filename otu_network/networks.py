"""Soft-thresholded co-occurrence networks and topological overlap."""

import pandas as pd
import numpy as np
from typing import Tuple, Optional

from otu_network.associations import pairwise_cor


def scale_free_fit(k, n_breaks: int = 10) -> dict:
    """Fit log10 p(k) against log10 k over an equal-width binning of connectivity.

    Empty bins take the bin midpoint as their connectivity and a frequency of 0,
    which becomes log10(1e-9) in the fit.

    Args:
        k: Connectivity per node (NaN values are ignored)
        n_breaks: Number of bins

    Returns:
        dict: r2, slope, signed_r2 (-sign(slope) * r2) and truncated_r2 (adjusted
        R^2 of the truncated exponential model)
    """
    k = np.asarray(k, dtype=np.float64)
    k = k[~np.isnan(k)]

    undefined = {'r2': np.nan, 'slope': np.nan, 'signed_r2': np.nan, 'truncated_r2': np.nan}
    if len(k) < 2 or np.ptp(k) == 0:
        return undefined

    bins = pd.cut(k, n_breaks)
    grouped = pd.Series(k).groupby(bins, observed=False)
    dk = grouped.mean().to_numpy(dtype=np.float64, copy=True)
    p_dk = grouped.size().to_numpy(dtype=np.float64) / len(k)

    edges = np.linspace(k.min(), k.max(), n_breaks + 1)
    mids = (edges[:-1] + edges[1:]) / 2
    replace = np.isnan(dk) | (dk == 0)
    dk[replace] = mids[replace]

    with np.errstate(divide='ignore', invalid='ignore'):
        log_dk = np.log10(dk)
        log_p = np.log10(p_dk + 1e-9)

    if not np.isfinite(log_dk).all():
        return undefined

    X = np.column_stack([np.ones_like(log_dk), log_dk])
    coef, _, _, _ = np.linalg.lstsq(X, log_p, rcond=None)
    ss_tot = ((log_p - log_p.mean()) ** 2).sum()
    if ss_tot == 0:
        return undefined
    r2 = 1 - ((log_p - X @ coef) ** 2).sum() / ss_tot
    slope = coef[1]

    X_trunc = np.column_stack([X, dk])
    coef_t, _, _, _ = np.linalg.lstsq(X_trunc, log_p, rcond=None)
    r2_t = 1 - ((log_p - X_trunc @ coef_t) ** 2).sum() / ss_tot
    n = len(log_p)
    truncated_r2 = 1 - (1 - r2_t) * (n - 1) / (n - 3) if n > 3 else np.nan

    return {
        'r2': float(r2),
        'slope': float(slope),
        'signed_r2': float(-np.sign(slope) * r2),
        'truncated_r2': float(truncated_r2)
    }


class SoftThresholdSelector:
    """Picks the adjacency power that best approximates a scale-free network."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def soft_connectivity(self, abundance: pd.DataFrame, powers) -> pd.DataFrame:
        """Connectivity of every taxon for every power, computed in column blocks.

        Only BLOCK_SIZE columns of the correlation matrix exist at any time.

        Returns:
            pd.DataFrame: Taxa x powers connectivity (self-adjacency excluded)
        """
        data = abundance.values
        n_taxa = data.shape[1]
        block_size = max(1, int(self.config.get('BLOCK_SIZE', 1000)))

        k = np.zeros((n_taxa, len(powers)))
        for start in range(0, n_taxa, block_size):
            block = np.arange(start, min(start + block_size, n_taxa))
            r, _ = pairwise_cor(data, data[:, block])
            sim = np.abs(r)
            sim[block, np.arange(len(block))] = np.nan
            for i, power in enumerate(powers):
                k[block, i] = np.nansum(sim ** power, axis=0)

        return pd.DataFrame(k, index=abundance.columns, columns=list(powers))

    def pick_soft_threshold(self, abundance: pd.DataFrame, powers=None) -> Tuple[pd.DataFrame, Optional[int]]:
        """Scale-free fit indices for each candidate power.

        Args:
            abundance: Samples x taxa matrix
            powers: Candidate powers (default config['POWERS'])

        Returns:
            tuple: (fit table indexed by power, smallest power whose signed R^2
            exceeds SFT_R2_CUT or None if no power qualifies)
        """
        if powers is None:
            powers = self.config['POWERS']
        powers = [int(p) for p in powers]
        r2_cut = self.config['SFT_R2_CUT']
        n_breaks = self.config.get('SFT_N_BREAKS', 10)

        self.logger.info(
            f"  Evaluating {len(powers)} soft-threshold powers on {abundance.shape[1]} taxa"
        )

        connectivity = self.soft_connectivity(abundance, powers)

        rows = []
        for power in powers:
            k = connectivity[power].values
            fit = scale_free_fit(k, n_breaks)
            rows.append({
                'power': power,
                'sft_r2': fit['r2'],
                'slope': fit['slope'],
                'signed_r2': fit['signed_r2'],
                'truncated_r2': fit['truncated_r2'],
                'mean_k': float(np.mean(k)),
                'median_k': float(np.median(k)),
                'max_k': float(np.max(k))
            })
            self.logger.debug(
                f"    power={power:>2}  signed R^2={fit['signed_r2']:.3f}  "
                f"slope={fit['slope']:.2f}  mean k={np.mean(k):.2f}"
            )

        fit_table = pd.DataFrame(rows).set_index('power')

        qualifying = fit_table.index[fit_table['signed_r2'] > r2_cut]
        power_estimate = int(qualifying[0]) if len(qualifying) > 0 else None

        if power_estimate is None:
            self.logger.warning(f"  No power reaches signed R^2 > {r2_cut}")
        else:
            self.logger.info(
                f"  Power estimate: {power_estimate} "
                f"(signed R^2={fit_table.loc[power_estimate, 'signed_r2']:.3f}, "
                f"mean k={fit_table.loc[power_estimate, 'mean_k']:.2f})"
            )

        return fit_table, power_estimate


class NetworkBuilder:
    """Builds weighted adjacency and topological overlap matrices."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def similarity(self, abundance: pd.DataFrame) -> pd.DataFrame:
        """Absolute pairwise-complete Pearson correlation between taxa."""
        r, _ = pairwise_cor(abundance.values)
        return pd.DataFrame(np.abs(r), index=abundance.columns, columns=abundance.columns)

    def adjacency(self, abundance: pd.DataFrame, power: int) -> pd.DataFrame:
        """Soft-thresholded adjacency |cor|^power.

        Undefined correlations stay NaN.
        """
        sim = self.similarity(abundance)
        adj = sim ** power

        n_undefined = int(sim.isna().all().sum())
        if n_undefined > 0:
            self.logger.warning(f"    {n_undefined} taxa have undefined correlations")

        self.logger.info(
            f"    Adjacency: {adj.shape[0]} taxa, power={power}, "
            f"mean off-diagonal={self._off_diagonal(adj.values).mean():.4f}"
        )
        return adj

    def connectivity(self, adjacency: pd.DataFrame) -> pd.Series:
        """Whole-network connectivity (NaN-aware row sums without self-adjacency)."""
        a = adjacency.values.copy()
        np.fill_diagonal(a, np.nan)
        return pd.Series(np.nansum(a, axis=1), index=adjacency.index, name='connectivity')

    def topological_overlap(self, adjacency: pd.DataFrame) -> pd.DataFrame:
        """Unsigned topological overlap of an adjacency matrix.

        TOM_ij = (sum_u a_iu a_uj + a_ij) / (min(k_i, k_j) + 1 - a_ij), with
        self-adjacency and undefined adjacencies counted as 0. The denominator is
        at least 1, and the diagonal is set to 1.
        """
        a = np.nan_to_num(adjacency.values.astype(np.float64), nan=0.0)
        np.fill_diagonal(a, 0.0)

        k = a.sum(axis=1)
        shared = a @ a
        tom = (shared + a) / (np.minimum.outer(k, k) + 1 - a)
        np.fill_diagonal(tom, 1.0)

        tom = pd.DataFrame(np.clip(tom, 0.0, 1.0), index=adjacency.index, columns=adjacency.columns)
        self.logger.info(
            f"    TOM: mean off-diagonal overlap={self._off_diagonal(tom.values).mean():.4f}"
        )
        return tom

    def tom_dissimilarity(self, tom: pd.DataFrame) -> pd.DataFrame:
        return 1 - tom

    @staticmethod
    def _off_diagonal(matrix: np.ndarray) -> np.ndarray:
        mask = ~np.eye(matrix.shape[0], dtype=bool)
        values = matrix[mask]
        values = values[~np.isnan(values)]
        return values if len(values) > 0 else np.zeros(1)
