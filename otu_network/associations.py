"""Pearson correlations with Student p-values between taxa, eigengenes and traits."""

import pandas as pd
import numpy as np
from scipy import stats
from statsmodels.stats.multitest import multipletests
from typing import Tuple


def pairwise_cor(x, y=None) -> Tuple[np.ndarray, np.ndarray]:
    """Pearson correlation between columns using pairwise-complete observations.

    Args:
        x: Array of shape (n_samples, p)
        y: Array of shape (n_samples, q); defaults to x

    Returns:
        tuple: (p x q correlation matrix, p x q number of complete pairs).
        Pairs with fewer than two observations or zero variance are NaN.
    """
    x = np.asarray(x, dtype=np.float64)
    y = x if y is None else np.asarray(y, dtype=np.float64)

    mask_x = ~np.isnan(x)
    mask_y = ~np.isnan(y)

    with np.errstate(divide='ignore', invalid='ignore'):
        if mask_x.all() and mask_y.all():
            n_obs = np.full((x.shape[1], y.shape[1]), float(x.shape[0]))
            xc = x - x.mean(axis=0)
            yc = y - y.mean(axis=0)
            num = xc.T @ yc
            den = np.sqrt(np.outer((xc ** 2).sum(axis=0), (yc ** 2).sum(axis=0)))
        else:
            x0 = np.where(mask_x, x, 0.0)
            y0 = np.where(mask_y, y, 0.0)
            mx = mask_x.astype(np.float64)
            my = mask_y.astype(np.float64)

            n_obs = mx.T @ my
            sum_x = x0.T @ my
            sum_y = mx.T @ y0
            sum_xx = (x0 ** 2).T @ my
            sum_yy = mx.T @ (y0 ** 2)
            sum_xy = x0.T @ y0

            num = n_obs * sum_xy - sum_x * sum_y
            den = np.sqrt(
                np.clip(n_obs * sum_xx - sum_x ** 2, 0, None)
                * np.clip(n_obs * sum_yy - sum_y ** 2, 0, None)
            )

        r = num / den

    r[~(den > 0)] = np.nan
    r[n_obs < 2] = np.nan

    # Constant columns give round-off instead of an exact zero denominator
    const_x = np.nanmax(np.where(mask_x, x, -np.inf), axis=0) == np.nanmin(np.where(mask_x, x, np.inf), axis=0)
    const_y = np.nanmax(np.where(mask_y, y, -np.inf), axis=0) == np.nanmin(np.where(mask_y, y, np.inf), axis=0)
    r[const_x, :] = np.nan
    r[:, const_y] = np.nan

    return np.clip(r, -1.0, 1.0), n_obs


def cor_pvalue_student(r, n_obs) -> np.ndarray:
    """Two-sided Student t p-value for Pearson correlations.

    Args:
        r: Correlation coefficients
        n_obs: Number of observations behind each coefficient

    Returns:
        np.ndarray: p-values, NaN where r is NaN or n_obs < 3
    """
    r = np.asarray(r, dtype=np.float64)
    df = np.asarray(n_obs, dtype=np.float64) - 2

    with np.errstate(divide='ignore', invalid='ignore'):
        t = np.sqrt(df) * r / np.sqrt(1 - r ** 2)
        p = 2 * stats.t.sf(np.abs(t), df)

    return np.where(df > 0, p, np.nan)


class TraitCorrelator:
    """Correlates eigengenes and taxa with environmental variables."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def correlate(self, features: pd.DataFrame, traits: pd.DataFrame) -> dict:
        """Correlate every feature column with every trait column.

        Args:
            features: Samples x features (eigengenes or taxa)
            traits: Samples x variables, same sample index

        Returns:
            dict: 'cor', 'pvalue', 'n_obs' DataFrames (features x variables) and,
            when P_ADJUST_METHOD is set, 'padj'
        """
        traits = traits.loc[features.index]

        r, n_obs = pairwise_cor(features.values, traits.values)
        p = cor_pvalue_student(r, n_obs)

        result = {
            'cor': pd.DataFrame(r, index=features.columns, columns=traits.columns),
            'pvalue': pd.DataFrame(p, index=features.columns, columns=traits.columns),
            'n_obs': pd.DataFrame(n_obs.astype(int), index=features.columns, columns=traits.columns)
        }

        method = self.config.get('P_ADJUST_METHOD')
        if method:
            result['padj'] = self.adjust_pvalues(result['pvalue'], method)

        n_undefined = int(np.isnan(r).sum())
        if n_undefined > 0:
            self.logger.warning(f"    {n_undefined} correlations undefined (zero variance)")

        return result

    def adjust_pvalues(self, pvalues: pd.DataFrame, method: str) -> pd.DataFrame:
        """Multiple-testing correction over all defined p-values of a table."""
        flat = pvalues.values.ravel()
        defined = ~np.isnan(flat)
        adjusted = np.full(flat.shape, np.nan)
        if defined.any():
            _, qvals, _, _ = multipletests(flat[defined], method=method)
            adjusted[defined] = qvals
        return pd.DataFrame(
            adjusted.reshape(pvalues.shape), index=pvalues.index, columns=pvalues.columns
        )

    def module_trait(self, eigengenes: pd.DataFrame, environment: pd.DataFrame) -> dict:
        """Module-trait relationships."""
        self.logger.info(
            f"  Correlating {eigengenes.shape[1]} module eigengenes with "
            f"{environment.shape[1]} environmental variables"
        )
        result = self.correlate(eigengenes, environment)

        cor = result['cor']
        if cor.size > 0 and cor.notna().any().any():
            best = cor.abs().stack().idxmax()
            self.logger.info(
                f"    Strongest: {best[0]} ~ {best[1]} "
                f"(r={cor.loc[best]:.3f}, p={result['pvalue'].loc[best]:.2e})"
            )
        return result

    def taxon_significance(self, abundance: pd.DataFrame, environment: pd.DataFrame) -> dict:
        """Taxon significance (GS): correlation of each taxon with each variable."""
        self.logger.info(
            f"  Computing taxon significance for {abundance.shape[1]} taxa"
        )
        return self.correlate(abundance, environment)

    def module_membership(self, abundance: pd.DataFrame, eigengenes: pd.DataFrame) -> dict:
        """Module membership (kME): correlation of each taxon with each eigengene."""
        self.logger.info(
            f"  Computing module membership for {abundance.shape[1]} taxa"
        )
        return self.correlate(abundance, eigengenes)

    def taxon_report(self, variable: str, significance: dict, membership: dict,
                     modules: pd.Series, taxonomy: pd.DataFrame = None) -> pd.DataFrame:
        """Long-format table of membership and significance for one variable.

        One row per (taxon, module) with the taxon's membership correlation,
        its significance for the variable, the p-value and taxonomy columns.

        Args:
            variable: Environmental variable name
            significance: Result of taxon_significance
            membership: Result of module_membership
            modules: Taxon -> module label assignment
            taxonomy: Optional taxa x ranks table

        Returns:
            pd.DataFrame: Report rows
        """
        mm = membership['cor'].copy()
        mm.index.name = 'OTU'
        report = (
            mm.reset_index()
            .melt(id_vars='OTU', var_name='module_color', value_name='module_member_cor')
        )

        gs = pd.DataFrame({
            'OTU': significance['cor'].index,
            f'GS.{variable}': significance['cor'][variable].values,
            f'p.GS.{variable}': significance['pvalue'][variable].values
        })
        report = report.merge(gs, on='OTU', how='left')
        report['assigned_module'] = report['OTU'].map(modules)

        if taxonomy is not None:
            report = report.merge(
                taxonomy.rename_axis('OTU').reset_index(), on='OTU', how='left'
            )

        return report
