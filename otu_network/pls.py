"""Partial least squares models of environmental variables from module taxa."""

import warnings

import pandas as pd
import numpy as np
from scipy.stats import pearsonr
from sklearn.cross_decomposition import PLSRegression
from sklearn.model_selection import LeaveOneOut, cross_val_predict

OK = 'ok'
NO_ADEQUATE_MODEL = 'no_adequate_model'


def vip_scores(model: PLSRegression) -> np.ndarray:
    """Variable importance in projection for a fitted single-response PLS model.

    VIP_j = sqrt(p * sum_a (w_ja / |w_a|)^2 SS_a / sum_a SS_a), where SS_a is the
    response sum of squares explained by component a.

    Args:
        model: Fitted PLSRegression

    Returns:
        np.ndarray: VIP score per predictor
    """
    t = model.x_scores_
    w = model.x_weights_
    q = np.asarray(model.y_loadings_)[0, :]
    p = w.shape[0]

    ss = (q ** 2) * (t ** 2).sum(axis=0)
    norms = np.linalg.norm(w, axis=0)

    with np.errstate(divide='ignore', invalid='ignore'):
        weights = np.nan_to_num((w / norms) ** 2, nan=0.0, posinf=0.0)
        return np.sqrt(p * (weights @ ss) / ss.sum())


class PLSModeler:
    """Leave-one-out cross-validated PLS with VIP ranking of predictors."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def max_components(self, n_samples: int, n_predictors: int) -> int:
        """Largest component count a leave-one-out fit supports."""
        limit = min(n_predictors, n_samples - 2)
        cap = self.config.get('PLS_MAX_COMPONENTS')
        if cap is not None:
            limit = min(limit, int(cap))
        return max(limit, 0)

    def cross_validate(self, X: pd.DataFrame, y: pd.Series) -> dict:
        """Cross-validated R^2 and predictions for every component count.

        Returns:
            dict: 'r2' Series indexed by component count, 'predictions'
            DataFrame (samples x component counts)
        """
        scale = self.config.get('PLS_SCALE', True)
        n_max = self.max_components(*X.shape)

        y_values = y.values.astype(np.float64)
        ss_total = ((y_values - y_values.mean()) ** 2).sum()

        r2 = {}
        predictions = {}
        for n_comp in range(1, n_max + 1):
            with warnings.catch_warnings():
                warnings.filterwarnings('ignore', message='.*residual is constant.*')
                pred = cross_val_predict(
                    PLSRegression(n_components=n_comp, scale=scale),
                    X.values, y_values, cv=LeaveOneOut()
                )
            pred = np.ravel(pred)
            press = ((y_values - pred) ** 2).sum()
            r2[n_comp] = 1 - press / ss_total if ss_total > 0 else np.nan
            predictions[n_comp] = pred

        return {
            'r2': pd.Series(r2, name='r2_cv', dtype=float).rename_axis('n_components'),
            'predictions': pd.DataFrame(predictions, index=X.index)
        }

    def select_components(self, r2: pd.Series):
        """Smallest component count with R^2 above threshold and within tolerance of the best.

        Returns:
            int or None: Selected component count, None if no count qualifies
        """
        threshold = self.config['PLS_R2_THRESHOLD']
        tolerance = self.config.get('PLS_R2_TOLERANCE', 0.0)

        qualifying = r2[r2 > threshold]
        if len(qualifying) == 0:
            return None

        best = qualifying.max()
        return int(qualifying[qualifying >= best - tolerance].index.min())

    def fit(self, X: pd.DataFrame, y: pd.Series) -> dict:
        """Fit PLS models of y on X and rank predictors by VIP.

        Args:
            X: Samples x predictors (module member taxa)
            y: Response variable, same sample index

        Returns:
            dict: status ('ok' or 'no_adequate_model'), r2_cv Series,
            n_components, r2, vip DataFrame (predictors ranked by VIP) and
            predictions DataFrame (measured vs LOO-predicted). n_components,
            r2, vip and predictions are None when no model qualifies.
        """
        y = y.loc[X.index]
        X = X.fillna(X.mean())
        threshold = self.config['PLS_R2_THRESHOLD']

        result = {
            'status': NO_ADEQUATE_MODEL,
            'r2_cv': pd.Series(dtype=float, name='r2_cv'),
            'n_components': None,
            'r2': None,
            'vip': None,
            'predictions': None,
            'prediction_cor': None
        }

        if self.max_components(*X.shape) < 1:
            self.logger.warning(
                f"    Too few samples ({X.shape[0]}) or predictors ({X.shape[1]}) for PLS"
            )
            return result

        cv = self.cross_validate(X, y)
        result['r2_cv'] = cv['r2']
        self.logger.debug(
            "    CV R^2: " + ", ".join(f"{n}:{v:.3f}" for n, v in cv['r2'].items())
        )

        n_comp = self.select_components(cv['r2'])
        if n_comp is None:
            self.logger.warning(
                f"    No adequate model: max CV R^2 {cv['r2'].max():.3f} <= {threshold}"
            )
            return result

        model = PLSRegression(n_components=n_comp, scale=self.config.get('PLS_SCALE', True))
        model.fit(X.values, y.values.astype(np.float64))

        vip = pd.DataFrame({'VIP': vip_scores(model)}, index=X.columns)
        vip.index.name = 'OTU'
        vip = vip.sort_values('VIP', ascending=False, kind='mergesort')
        vip['rank'] = np.arange(1, len(vip) + 1)

        predictions = pd.DataFrame({
            'measured': y.values,
            'predicted': cv['predictions'][n_comp].values
        }, index=X.index)
        prediction_cor = pearsonr(predictions['measured'], predictions['predicted'])

        result.update({
            'status': OK,
            'n_components': n_comp,
            'r2': float(cv['r2'][n_comp]),
            'vip': vip,
            'predictions': predictions,
            'prediction_cor': (float(prediction_cor[0]), float(prediction_cor[1]))
        })

        self.logger.info(
            f"    Selected {n_comp} components (CV R^2={result['r2']:.3f}); "
            f"top VIP: {vip.index[0]} ({vip['VIP'].iloc[0]:.2f})"
        )
        return result
