"""Household merge, two-group t-tests and a linear model.

The outcome is the household's log10 concentration of one culture target
in one sample type (``household_exposure_table``).  Exposures come from
the cleaned survey.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression

from washlab.descriptive import as_indicator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

@dataclass
class MergeReport:
    """Join bookkeeping between lab rows and survey households."""

    n_lab: int
    n_matched: int
    unmatched_lab_ids: List[str] = field(default_factory=list)
    survey_without_lab: List[str] = field(default_factory=list)

    @property
    def match_rate(self) -> float:
        return self.n_matched / self.n_lab if self.n_lab else float("nan")

    def to_dict(self) -> dict:
        return {
            "n_lab": self.n_lab,
            "n_matched": self.n_matched,
            "match_rate": self.match_rate,
            "unmatched_lab_ids": list(self.unmatched_lab_ids),
            "survey_without_lab": list(self.survey_without_lab),
        }


def merge_lab_survey(
    lab: pd.DataFrame,
    survey: pd.DataFrame,
    on: str = "household_id",
) -> Tuple[pd.DataFrame, MergeReport]:
    """Left-join survey columns onto lab rows.

    Each lab row keeps exactly one output row (``validate="many_to_one"``
    raises if the survey has duplicate keys).

    Returns
    -------
    (merged, MergeReport)
    """
    merged = lab.merge(survey, on=on, how="left", validate="many_to_one", indicator=True)
    matched = merged["_merge"] == "both"
    lab_ids = set(lab[on].dropna().astype(str))
    survey_ids = set(survey[on].dropna().astype(str))

    report = MergeReport(
        n_lab=len(lab),
        n_matched=int(matched.sum()),
        unmatched_lab_ids=sorted(set(merged.loc[~matched, on].dropna().astype(str))),
        survey_without_lab=sorted(survey_ids - lab_ids),
    )
    if report.unmatched_lab_ids:
        logger.warning(
            "%d lab households not in survey: %s",
            len(report.unmatched_lab_ids), report.unmatched_lab_ids[:10],
        )
    logger.info("Merged lab/survey: %d/%d rows matched", report.n_matched, report.n_lab)
    return merged.drop(columns="_merge"), report


def household_exposure_table(
    micro: pd.DataFrame,
    sample_type: str,
    target: str,
) -> pd.DataFrame:
    """One row per household: mean log10 concentration and any-detection.

    Returns
    -------
    pd.DataFrame
        Columns: household_id, log10_conc, detected, n_samples.
    """
    sub = micro[(micro["sample_type"] == sample_type) & (micro["target"] == target)].copy()
    if sub.empty:
        raise ValueError(f"No microbiology rows for {sample_type}/{target}")
    sub["_det"] = as_indicator(sub["detected"])
    out = (
        sub.groupby("household_id")
        .agg(
            log10_conc=("log10_conc", "mean"),
            detected=("_det", "max"),
            n_samples=("sample_id", "nunique"),
        )
        .reset_index()
    )
    return out


# ---------------------------------------------------------------------------
# t-tests
# ---------------------------------------------------------------------------

@dataclass
class TTestResult:
    """Two-sample comparison of an outcome between exposed and unexposed."""

    outcome: str
    group: str
    n_exposed: int
    n_unexposed: int
    mean_exposed: float
    mean_unexposed: float
    difference: float
    ci_low: float
    ci_high: float
    t_stat: float
    dof: float
    p_value: float
    method: str

    def to_dict(self) -> dict:
        return dict(self.__dict__)


def compare_groups(
    df: pd.DataFrame,
    outcome: str,
    group: str,
    equal_var: bool = False,
    confidence: float = 0.95,
) -> TTestResult:
    """t-test of ``outcome`` between group == True and group == False.

    Welch's test by default; ``equal_var=True`` gives the pooled Student test.

    Raises ValueError if either group has fewer than 2 observations.
    """
    g = as_indicator(df[group])
    y = pd.to_numeric(df[outcome], errors="coerce")
    exposed = y[(g == 1.0) & y.notna()].values
    unexposed = y[(g == 0.0) & y.notna()].values
    n1, n0 = len(exposed), len(unexposed)
    if n1 < 2 or n0 < 2:
        raise ValueError(
            f"Need at least 2 observations per group for {group}: got {n1} exposed, {n0} unexposed"
        )

    res = stats.ttest_ind(exposed, unexposed, equal_var=equal_var)
    v1, v0 = exposed.var(ddof=1), unexposed.var(ddof=1)
    if equal_var:
        dof = n1 + n0 - 2
        pooled = ((n1 - 1) * v1 + (n0 - 1) * v0) / dof
        se = np.sqrt(pooled * (1 / n1 + 1 / n0))
    else:
        a, b = v1 / n1, v0 / n0
        se = np.sqrt(a + b)
        dof = (a + b) ** 2 / (a ** 2 / (n1 - 1) + b ** 2 / (n0 - 1)) if (a + b) > 0 else float("nan")

    diff = float(exposed.mean() - unexposed.mean())
    crit = stats.t.ppf(1 - (1 - confidence) / 2, dof)
    return TTestResult(
        outcome=outcome,
        group=group,
        n_exposed=n1,
        n_unexposed=n0,
        mean_exposed=float(exposed.mean()),
        mean_unexposed=float(unexposed.mean()),
        difference=diff,
        ci_low=float(diff - crit * se),
        ci_high=float(diff + crit * se),
        t_stat=float(res.statistic),
        dof=float(dof),
        p_value=float(res.pvalue),
        method="student" if equal_var else "welch",
    )


def run_ttests(
    df: pd.DataFrame,
    outcome: str,
    exposures: List[str],
    equal_var: bool = False,
) -> pd.DataFrame:
    """One t-test per exposure; exposures that cannot be tested are skipped."""
    rows = []
    for exposure in exposures:
        if exposure not in df.columns:
            logger.warning("Exposure %s not in merged data; skipped", exposure)
            continue
        try:
            rows.append(compare_groups(df, outcome, exposure, equal_var=equal_var).to_dict())
        except ValueError as exc:
            logger.warning("t-test for %s skipped: %s", exposure, exc)
    cols = list(TTestResult.__dataclass_fields__)
    return pd.DataFrame(rows, columns=cols)


# ---------------------------------------------------------------------------
# Linear model
# ---------------------------------------------------------------------------

@dataclass
class RegressionResult:
    """OLS fit with coefficient inference."""

    outcome: str
    n: int
    r_squared: float
    adj_r_squared: float
    coefficients: pd.DataFrame
    model: LinearRegression
    terms: List[str]

    def summary(self) -> str:
        lines = [
            f"OLS: {self.outcome} ~ {' + '.join(self.terms)}",
            f"n={self.n}  R²={self.r_squared:.3f}  adj R²={self.adj_r_squared:.3f}",
        ]
        for _, row in self.coefficients.iterrows():
            lines.append(
                f"  {row['term']:<28} {row['estimate']:>9.3f} "
                f"(SE {row['std_error']:.3f}, p={row['p_value']:.3g})"
            )
        return "\n".join(lines)


def _encode_covariate(values: pd.Series, name: str) -> pd.DataFrame:
    """Booleans -> 0/1, numbers as-is, anything else -> one-hot (drop first)."""
    non_null = values.dropna()
    text = set(non_null.astype(str).str.strip().str.lower())
    if pd.api.types.is_bool_dtype(values) or (text and text <= {"true", "false"}):
        return pd.DataFrame({name: as_indicator(values)})
    numeric = pd.to_numeric(values, errors="coerce")
    if numeric.notna().sum() == non_null.size:
        return pd.DataFrame({name: numeric.astype(float)})
    return pd.get_dummies(values, prefix=name, drop_first=True).astype(float)


def build_design(
    df: pd.DataFrame,
    outcome: str,
    covariates: List[str],
) -> Tuple[pd.DataFrame, pd.Series]:
    """Complete-case design matrix and outcome vector."""
    missing = [c for c in [outcome, *covariates] if c not in df.columns]
    if missing:
        raise ValueError(f"Columns missing for regression: {missing}")

    work = df[[outcome, *covariates]].copy()
    work[outcome] = pd.to_numeric(work[outcome], errors="coerce")
    work = work.dropna()
    dropped = len(df) - len(work)
    if dropped:
        logger.info("Regression: %d incomplete rows dropped", dropped)

    X = pd.concat([_encode_covariate(work[c], c) for c in covariates], axis=1)
    return X, work[outcome].astype(float)


def fit_linear_model(
    df: pd.DataFrame,
    outcome: str,
    covariates: List[str],
    confidence: float = 0.95,
) -> RegressionResult:
    """Ordinary least squares of ``outcome`` on ``covariates``.

    Raises ValueError if there are no more rows than parameters or the
    design matrix is rank deficient.
    """
    X, y = build_design(df, outcome, covariates)
    n, p = X.shape
    if n <= p + 1:
        raise ValueError(f"Regression needs more than {p + 1} complete rows, got {n}")

    X1 = np.column_stack([np.ones(n), X.values])
    if np.linalg.matrix_rank(X1) < p + 1:
        raise ValueError("Design matrix is singular (collinear or constant covariates)")

    model = LinearRegression()
    model.fit(X.values, y.values)

    resid = y.values - model.predict(X.values)
    dof = n - p - 1
    sigma2 = float(resid @ resid) / dof
    cov = sigma2 * np.linalg.inv(X1.T @ X1)
    se = np.sqrt(np.diag(cov))
    est = np.concatenate([[model.intercept_], model.coef_])
    t_vals = est / se
    p_vals = 2 * stats.t.sf(np.abs(t_vals), dof)
    crit = stats.t.ppf(1 - (1 - confidence) / 2, dof)

    coefficients = pd.DataFrame({
        "term": ["intercept", *X.columns],
        "estimate": est,
        "std_error": se,
        "t_value": t_vals,
        "p_value": p_vals,
        "ci_low": est - crit * se,
        "ci_high": est + crit * se,
    })

    r2 = float(model.score(X.values, y.values))
    adj = 1 - (1 - r2) * (n - 1) / dof
    logger.info("OLS %s: n=%d, %d terms, R²=%.4f", outcome, n, p, r2)
    return RegressionResult(
        outcome=outcome,
        n=n,
        r_squared=r2,
        adj_r_squared=adj,
        coefficients=coefficients,
        model=model,
        terms=list(X.columns),
    )


def regression_table(result: RegressionResult) -> pd.DataFrame:
    """Coefficient table with fit statistics repeated on every row."""
    out = result.coefficients.copy()
    out.insert(0, "outcome", result.outcome)
    out["n"] = result.n
    out["r_squared"] = result.r_squared
    out["adj_r_squared"] = result.adj_r_squared
    return out


def describe_groups(df: pd.DataFrame, outcome: str, exposures: List[str]) -> Dict[str, pd.DataFrame]:
    """Outcome mean/sd/n per exposure level, for the report."""
    out: Dict[str, pd.DataFrame] = {}
    for exposure in exposures:
        if exposure not in df.columns:
            continue
        g = as_indicator(df[exposure])
        table = (
            pd.DataFrame({"level": g, "y": pd.to_numeric(df[outcome], errors="coerce")})
            .dropna()
            .groupby("level")["y"]
            .agg(["count", "mean", "std"])
            .reset_index()
        )
        out[exposure] = table
    return out
