import numpy as np
import pandas as pd
import pytest
from scipy.stats import pearsonr

from otu_network.associations import pairwise_cor, cor_pvalue_student, TraitCorrelator
from otu_network.config import make_config

from conftest import BLOCK1, BLOCK2


class TestPairwiseCor:
    def test_matches_pandas_pairwise_complete(self):
        rng = np.random.default_rng(3)
        data = pd.DataFrame(rng.normal(size=(25, 6)), columns=list("abcdef"))
        data.iloc[[0, 4, 9], 1] = np.nan
        data.iloc[[2, 4, 17], 3] = np.nan

        r, n_obs = pairwise_cor(data.values)

        np.testing.assert_allclose(r, data.corr().values, atol=1e-10)
        assert n_obs[1, 3] == 25 - 5
        assert n_obs[0, 0] == 25

    def test_complete_data_is_symmetric_with_unit_diagonal(self):
        rng = np.random.default_rng(4)
        x = rng.normal(size=(12, 5))

        r, _ = pairwise_cor(x)

        np.testing.assert_allclose(r, r.T)
        np.testing.assert_allclose(np.diag(r), 1.0)

    def test_constant_column_is_undefined(self):
        x = np.column_stack([np.arange(10.0), np.full(10, 3.0), np.arange(10.0) ** 2])

        r, _ = pairwise_cor(x)

        assert np.isnan(r[1]).all()
        assert np.isnan(r[:, 1]).all()
        assert not np.isnan(r[0, 2])

    def test_cross_correlation_shape(self):
        rng = np.random.default_rng(5)
        r, n_obs = pairwise_cor(rng.normal(size=(10, 4)), rng.normal(size=(10, 2)))
        assert r.shape == (4, 2)
        assert n_obs.shape == (4, 2)


def test_student_pvalue_matches_scipy():
    rng = np.random.default_rng(6)
    x = rng.normal(size=30)
    y = 0.4 * x + rng.normal(size=30)

    expected_r, expected_p = pearsonr(x, y)
    p = cor_pvalue_student(np.array([expected_r]), np.array([30]))

    np.testing.assert_allclose(p[0], expected_p, rtol=1e-6)


def test_student_pvalue_undefined_for_two_observations():
    p = cor_pvalue_student(np.array([0.5, np.nan]), np.array([2, 10]))
    assert np.isnan(p).all()


class TestTraitCorrelator:
    def test_correlate_returns_aligned_tables(self, logger, abundance, metadata):
        correlator = TraitCorrelator(logger, make_config())
        env = metadata[['Temperature', 'Salinity']]

        result = correlator.correlate(abundance, env)

        assert set(result) == {'cor', 'pvalue', 'n_obs'}
        assert list(result['cor'].index) == list(abundance.columns)
        assert list(result['cor'].columns) == ['Temperature', 'Salinity']
        assert (result['n_obs'] == 20).all().all()

    def test_block_taxa_track_salinity(self, logger, abundance, metadata):
        correlator = TraitCorrelator(logger, make_config())

        result = correlator.taxon_significance(abundance, metadata[['Salinity']])

        assert (result['cor'].loc[BLOCK2, 'Salinity'] > 0.9).all()
        assert (result['pvalue'].loc[BLOCK2, 'Salinity'] < 0.01).all()
        assert (result['cor'].loc[BLOCK1, 'Salinity'].abs() < 0.6).all()

    def test_adjusted_pvalues(self, logger, abundance, metadata):
        correlator = TraitCorrelator(logger, make_config(P_ADJUST_METHOD='fdr_bh'))

        result = correlator.correlate(abundance, metadata[['Temperature', 'Salinity']])

        assert 'padj' in result
        assert (result['padj'] >= result['pvalue'] - 1e-12).all().all()
        assert (result['padj'] <= 1).all().all()

    def test_taxon_report_layout(self, logger, abundance, metadata, taxonomy):
        correlator = TraitCorrelator(logger, make_config())
        env = metadata[['Salinity']]
        eigengenes = pd.DataFrame({
            'turquoise': abundance[BLOCK2].mean(axis=1),
            'blue': abundance[BLOCK1].mean(axis=1)
        })
        modules = pd.Series(['blue'] * 7 + ['turquoise'] * 8, index=abundance.columns)

        report = correlator.taxon_report(
            'Salinity',
            correlator.taxon_significance(abundance, env),
            correlator.module_membership(abundance, eigengenes),
            modules,
            taxonomy
        )

        assert len(report) == abundance.shape[1] * 2
        for column in ('OTU', 'module_color', 'module_member_cor', 'GS.Salinity',
                       'p.GS.Salinity', 'assigned_module', 'Phylum', 'Family'):
            assert column in report.columns
        row = report[(report['OTU'] == 'OTU_8') & (report['module_color'] == 'turquoise')]
        assert row['assigned_module'].iloc[0] == 'turquoise'
        assert row['module_member_cor'].iloc[0] > 0.9
        assert row['Family'].iloc[0] == 'Flavobacteriaceae'


def test_correlate_warns_on_constant_trait(logger, abundance):
    correlator = TraitCorrelator(logger, make_config())
    env = pd.DataFrame({'flat': 1.0}, index=abundance.index)

    result = correlator.correlate(abundance, env)

    assert result['cor']['flat'].isna().all()
    assert result['pvalue']['flat'].isna().all()


@pytest.mark.parametrize("method", ["bonferroni", "fdr_bh"])
def test_adjust_pvalues_keeps_missing(logger, method):
    correlator = TraitCorrelator(logger, make_config())
    pvalues = pd.DataFrame({'a': [0.01, np.nan, 0.04], 'b': [0.5, 0.02, np.nan]})

    adjusted = correlator.adjust_pvalues(pvalues, method)

    assert adjusted.isna().equals(pvalues.isna())
