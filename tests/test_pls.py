import numpy as np
import pandas as pd
import pytest
from sklearn.cross_decomposition import PLSRegression

from otu_network.config import make_config
from otu_network.pls import PLSModeler, vip_scores, OK, NO_ADEQUATE_MODEL


@pytest.fixture
def predictors():
    rng = np.random.default_rng(11)
    return pd.DataFrame(
        rng.normal(size=(20, 6)),
        index=[f"S{i:02d}" for i in range(1, 21)],
        columns=[f"OTU_{i}" for i in range(1, 7)]
    )


@pytest.fixture
def response(predictors):
    rng = np.random.default_rng(12)
    beta = np.array([2.0, -1.0, 0.5, 0.0, 0.0, 0.0])
    return pd.Series(predictors.values @ beta + 0.1 * rng.normal(size=20), index=predictors.index)


class TestVIP:
    def test_mean_squared_vip_is_one(self, predictors, response):
        model = PLSRegression(n_components=2).fit(predictors.values, response.values)

        vip = vip_scores(model)

        assert vip.shape == (6,)
        assert np.sum(vip ** 2) == pytest.approx(6.0)

    def test_vip_independent_of_column_order(self, predictors, response):
        shuffled = predictors[predictors.columns[::-1]]

        vip = pd.Series(
            vip_scores(PLSRegression(n_components=2).fit(predictors.values, response.values)),
            index=predictors.columns
        )
        vip_shuffled = pd.Series(
            vip_scores(PLSRegression(n_components=2).fit(shuffled.values, response.values)),
            index=shuffled.columns
        )

        np.testing.assert_allclose(vip.sort_index().values, vip_shuffled.sort_index().values, rtol=1e-6)

    def test_informative_predictor_ranks_first(self, predictors, response):
        vip = vip_scores(PLSRegression(n_components=2).fit(predictors.values, response.values))
        assert np.argmax(vip) == 0


class TestComponentSelection:
    def test_smallest_count_within_tolerance(self, logger):
        modeler = PLSModeler(logger, make_config(PLS_R2_THRESHOLD=0.5, PLS_R2_TOLERANCE=0.01))
        r2 = pd.Series({1: 0.4, 2: 0.8, 3: 0.805, 4: 0.7})

        assert modeler.select_components(r2) == 2

    def test_zero_tolerance_picks_best(self, logger):
        modeler = PLSModeler(logger, make_config(PLS_R2_THRESHOLD=0.5, PLS_R2_TOLERANCE=0.0))
        r2 = pd.Series({1: 0.4, 2: 0.8, 3: 0.805, 4: 0.7})

        assert modeler.select_components(r2) == 3

    def test_nothing_above_threshold(self, logger):
        modeler = PLSModeler(logger, make_config(PLS_R2_THRESHOLD=0.5))
        assert modeler.select_components(pd.Series({1: 0.2, 2: 0.5})) is None

    def test_max_components(self, logger):
        assert PLSModeler(logger, make_config()).max_components(20, 8) == 8
        assert PLSModeler(logger, make_config()).max_components(5, 8) == 3
        assert PLSModeler(logger, make_config(PLS_MAX_COMPONENTS=2)).max_components(20, 8) == 2


class TestFit:
    def test_fit_ranks_predictors(self, logger, predictors, response):
        result = PLSModeler(logger, make_config()).fit(predictors, response)

        assert result['status'] == OK
        assert result['r2'] > 0.9
        assert list(result['r2_cv'].index) == list(range(1, 7))
        assert result['r2'] == pytest.approx(result['r2_cv'][result['n_components']])
        assert result['vip'].index[0] == 'OTU_1'
        assert list(result['vip']['rank']) == list(range(1, 7))
        assert result['vip']['VIP'].is_monotonic_decreasing
        assert list(result['predictions'].columns) == ['measured', 'predicted']
        assert result['prediction_cor'][0] > 0.9

    def test_fit_independent_of_column_order(self, logger, predictors, response):
        modeler = PLSModeler(logger, make_config())

        first = modeler.fit(predictors, response)
        second = modeler.fit(predictors[predictors.columns[::-1]], response)

        assert first['n_components'] == second['n_components']
        np.testing.assert_allclose(
            first['vip']['VIP'].sort_index().values,
            second['vip']['VIP'].sort_index().values,
            rtol=1e-6
        )

    def test_unrelated_response_has_no_adequate_model(self, logger, predictors):
        rng = np.random.default_rng(13)
        noise = pd.Series(rng.normal(size=20), index=predictors.index)

        result = PLSModeler(logger, make_config()).fit(predictors, noise)

        assert result['status'] == NO_ADEQUATE_MODEL
        assert result['vip'] is None
        assert result['n_components'] is None
        assert len(result['r2_cv']) == 6
        assert (result['r2_cv'] <= 0.5).all()

    def test_too_few_samples(self, logger, predictors, response):
        result = PLSModeler(logger, make_config()).fit(predictors.iloc[:2], response.iloc[:2])

        assert result['status'] == NO_ADEQUATE_MODEL
        assert len(result['r2_cv']) == 0
