from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from loguru import logger

from .config import COLS, ModelParams
from .features import model_frame


@dataclass
class OlsResult:
    name: str
    covariates: List[str]
    params: Dict[str, float]
    bse: Dict[str, float]
    tvalues: Dict[str, float]
    pvalues: Dict[str, float]
    rsquared: float
    rsquared_adj: float
    fvalue: float
    f_pvalue: float
    nobs: int
    summary: str
    notes: List[str] = field(default_factory=list)

    def significant(self, alpha: float = 0.05) -> List[str]:
        return [k for k, p in self.pvalues.items() if k != "const" and p < alpha]

    def as_dict(self) -> Dict:
        return {
            "name": self.name,
            "covariates": list(self.covariates),
            "params": self.params,
            "bse": self.bse,
            "tvalues": self.tvalues,
            "pvalues": self.pvalues,
            "rsquared": self.rsquared,
            "rsquared_adj": self.rsquared_adj,
            "fvalue": self.fvalue,
            "f_pvalue": self.f_pvalue,
            "nobs": self.nobs,
            "notes": list(self.notes),
        }


def _floats(s: pd.Series) -> Dict[str, float]:
    return {str(k): float(v) for k, v in s.items()}


def design_matrix(frame: pd.DataFrame, covariates: List[str]) -> pd.DataFrame:
    """Covariates plus an intercept; refuses collinear columns instead of falling back to a pseudo-inverse."""
    X = sm.add_constant(frame[covariates].astype(float), has_constant="add")
    rank = int(np.linalg.matrix_rank(X.to_numpy()))
    if rank < X.shape[1]:
        raise ValueError(
            f"Design matrix over {list(X.columns)} has rank {rank} < {X.shape[1]} columns; "
            "drop a reference category or a redundant covariate."
        )
    return X


def fit_ols(
    frame: pd.DataFrame,
    covariates: List[str],
    name: str,
    response: str = COLS.poll_site_count,
    notes: Optional[List[str]] = None,
) -> OlsResult:
    y = frame[response].astype(float)
    X = design_matrix(frame, covariates)
    fit = sm.OLS(y, X).fit()
    return OlsResult(
        name=name,
        covariates=list(covariates),
        params=_floats(fit.params),
        bse=_floats(fit.bse),
        tvalues=_floats(fit.tvalues),
        pvalues=_floats(fit.pvalues),
        rsquared=float(fit.rsquared),
        rsquared_adj=float(fit.rsquared_adj),
        fvalue=float(fit.fvalue) if fit.fvalue is not None else np.nan,
        f_pvalue=float(fit.f_pvalue) if fit.f_pvalue is not None else np.nan,
        nobs=int(fit.nobs),
        summary=str(fit.summary(title=f"OLS: {name}")),
        notes=list(notes or []),
    )


def fit_models(summary: pd.DataFrame, params: Optional[ModelParams] = None) -> Dict[str, OlsResult]:
    """
    Model A: poll_site_count ~ population.
    Model B: poll_site_count ~ population + income-to-poverty + race percentages,
    one race category held out as the reference group.
    Both use the complete cases of Model B so their R^2 values are comparable.
    """
    params = params or ModelParams()
    frame = model_frame(summary, params.full)
    dropped = len(summary) - len(frame)
    if dropped:
        logger.info(f"Model sample: {len(frame)} tracts ({dropped} dropped for missing covariates)")
    if len(frame) <= len(params.full) + 1:
        raise ValueError(f"Too few complete tracts ({len(frame)}) to fit the regression models.")

    sample = (
        f"Fitted on the {len(frame)} of {len(summary)} tracts with every Model B covariate present "
        f"({dropped} dropped), so both models share one sample."
    )
    reference = f"Race shares are relative to the omitted reference group {params.race_reference.pct_col}."
    results = {
        "population": fit_ols(frame, params.population, "poll sites ~ population", params.response, [sample]),
        "full": fit_ols(
            frame, params.full, "poll sites ~ population + income + race", params.response, [sample, reference]
        ),
    }
    for key, res in results.items():
        logger.info(
            f"[model] {key}: n={res.nobs} R2={res.rsquared:.4f} F={res.fvalue:.3f} "
            f"p(F)={res.f_pvalue:.3g} significant={res.significant(params.alpha)}"
        )
    return results
