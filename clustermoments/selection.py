"""
Model selection across the four cluster-volume moments.

The selector walks the same decision path for every response and emits
one shared design, refitted per response:

  Step 1  response transform (identity vs log) by adjusted R^2
  Step 2  pairwise interactions, each tested alone by nested F-test
  Step 3  polynomial degree for St by sequential ANOVA, aligned to the
          smallest degree chosen across responses
  Step 4  ridge penalty search by k-fold CV (evaluated alternative)
  Step 5  natural-spline St basis by k-fold CV (evaluated alternative)

The shared structure trades a little per-moment fit for designs that
differ only in their coefficients.
"""

import time
import warnings

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator

from .design import INTERACTIONS, DesignSpec
from .errors import CrossValidationError, RankDeficiencyError
from .fitting import fit
from .prediction import confidence_interval_tables, predict_table
from .recode import FACTORS, RESPONSES, recode_table, validate_observations
from .scoring import (anova_table, cv_mse, fold_assignments, score,
                      score_table)


DEFAULT_RIDGE_LAMBDAS = np.logspace(-4, 4, 50)
INTERACTION_RULES = ('any', 'all', 'majority')


# ---------------------------------------------------------------------------
# Policy helpers
# ---------------------------------------------------------------------------

def choose_transform(identity_scores, log_scores):
    """
    Pick the response transform from paired adjusted R^2 values.

    Log wins unless identity is strictly better for more responses than
    log is; an exact tie goes to log so every moment shares the same
    scale.  With four responses, log therefore wins whenever it improves
    at least two of them.
    """
    identity_scores = np.asarray(identity_scores, dtype=np.float64)
    log_scores = np.asarray(log_scores, dtype=np.float64)
    n_log = int(np.sum(log_scores > identity_scores))
    n_identity = int(np.sum(identity_scores > log_scores))
    return 'identity' if n_identity > n_log else 'log'


def _retain(significant, rule):
    significant = list(significant)
    if rule == 'any':
        return any(significant)
    if rule == 'all':
        return all(significant)
    return sum(significant) > len(significant) / 2.0


def select_ridge_lambda(design_spec, rows, response, lambdas=None, k=10,
                        seed=0, n_jobs=1):
    """
    Cross-validate a ridge fit of ``response`` over a grid of penalties.

    Every penalty is scored on the same fold assignment.  Ties go to the
    smaller penalty.

    Returns
    -------
    best_lambda : float
    path : pd.DataFrame
        Columns ``lambda`` and ``cv_mse``.
    """
    lambdas = np.sort(np.asarray(
        DEFAULT_RIDGE_LAMBDAS if lambdas is None else lambdas,
        dtype=np.float64))
    mses = [cv_mse(design_spec, rows, k=k, seed=seed, response=response,
                   ridge_lambda=lam, n_jobs=n_jobs)
            for lam in lambdas]
    path = pd.DataFrame({'lambda': lambdas, 'cv_mse': mses})
    best = float(lambdas[int(np.argmin(mses))])
    return best, path


# ---------------------------------------------------------------------------
# Main class
# ---------------------------------------------------------------------------

class MomentModelSelector(BaseEstimator):
    """
    Shared-structure model selection for the raw cluster-volume moments.

    Parameters
    ----------
    alpha : float, default=0.05
        Significance level for interaction and degree F-tests.
    max_degree : int, default=8
        Highest St polynomial degree tried in Step 3.
    interaction_rule : {'any', 'all', 'majority'}, default='any'
        How per-response significance is combined into one decision per
        interaction term.
    cv_folds : int, default=10
        k for every cross-validated MSE.
    random_state : int, default=0
        Seed for the fold assignment (shared by all CV runs).
    ridge_lambdas : array-like or None
        Ridge penalty grid; ``None`` uses ``logspace(-4, 4, 50)``.
    spline_dfs : tuple of int, default=(2, 3, 4, 5, 6)
        Natural-spline sizes compared against the chosen polynomial.
    responses : tuple of str
        Response columns, all modelled with the same design.
    n_jobs : int, default=1
        joblib workers for per-response fits and CV folds.
    """

    def __init__(
        self,
        alpha=0.05,
        max_degree=8,
        interaction_rule='any',
        cv_folds=10,
        random_state=0,
        ridge_lambdas=None,
        spline_dfs=(2, 3, 4, 5, 6),
        responses=RESPONSES,
        n_jobs=1,
    ):
        self.alpha = alpha
        self.max_degree = max_degree
        self.interaction_rule = interaction_rule
        self.cv_folds = cv_folds
        self.random_state = random_state
        self.ridge_lambdas = ridge_lambdas
        self.spline_dfs = spline_dfs
        self.responses = responses
        self.n_jobs = n_jobs

        # --- attributes set during fit ---
        self.step1_results_ = None
        self.step2_results_ = None
        self.step3_results_ = None
        self.step4_results_ = None
        self.step5_results_ = None

        self.transform_ = None
        self.interactions_ = None
        self.degree_ = None
        self.final_spec_ = None
        self.final_models_ = None
        self.scores_ = None
        self.runtime_ = None

        self._is_fitted = False

    # ---- public interface ------------------------------------------------

    def fit(self, train, include_alternatives=True, verbose=True):
        """
        Run the selection on a training table.

        Parameters
        ----------
        train : pd.DataFrame
            Columns ``Re``, ``Fr``, ``St`` and the response columns.
            It is recoded into a new table; the input is not modified.
        include_alternatives : bool, default=True
            Whether to run Steps 4 and 5 (ridge and spline comparisons).
        verbose : bool, default=True
            Print progress.

        Returns
        -------
        self
        """
        if self.interaction_rule not in INTERACTION_RULES:
            raise ValueError(
                f"interaction_rule must be one of {INTERACTION_RULES}")
        t0 = time.time()

        validate_observations(train, responses=self.responses)
        train = recode_table(train)

        if verbose:
            print("=" * 70)
            print("CLUSTER MOMENT MODEL SELECTION")
            print("=" * 70)
            print(f"  Dataset : n={len(train)}, "
                  f"responses={len(self.responses)}")
            print(f"  alpha={self.alpha}  max_degree={self.max_degree}  "
                  f"cv_folds={self.cv_folds}  seed={self.random_state}")
            print()

        if verbose:
            print("STEP 1: RESPONSE TRANSFORM")
            print("-" * 70)
        self.step1_results_ = self._step1_transform(train, verbose)
        self.transform_ = self.step1_results_['transform']

        if verbose:
            print("\nSTEP 2: INTERACTION TESTING "
                  f"(alpha={self.alpha}, rule={self.interaction_rule})")
            print("-" * 70)
        self.step2_results_ = self._step2_interactions(train, verbose)
        self.interactions_ = self.step2_results_['retained']

        if verbose:
            print("\nSTEP 3: POLYNOMIAL DEGREE (SEQUENTIAL ANOVA)")
            print("-" * 70)
        self.step3_results_ = self._step3_degree(train, verbose)
        self.degree_ = self.step3_results_['degree']

        self.final_spec_ = DesignSpec(
            transform=self.transform_,
            degree=self.degree_,
            main_effects=FACTORS,
            interactions=self.interactions_,
        )

        if include_alternatives:
            if verbose:
                print(f"\nSTEP 4: RIDGE PENALTY ({self.cv_folds}-FOLD CV)")
                print("-" * 70)
            self.step4_results_ = self._step4_ridge(train, verbose)

            if verbose:
                print(f"\nSTEP 5: NATURAL SPLINE ({self.cv_folds}-FOLD CV)")
                print("-" * 70)
            self.step5_results_ = self._step5_splines(train, verbose)
        else:
            self.step4_results_ = {'results_df': pd.DataFrame(),
                                   'paths': {}}
            self.step5_results_ = {'results_df': pd.DataFrame()}

        self._compile(train)
        self.runtime_ = time.time() - t0
        self._is_fitted = True

        if verbose:
            self._print_summary()

        return self

    def predict(self, new_rows):
        """
        Return ``new_rows`` augmented with one predicted column per
        response, on the original moment scale.
        """
        self._check_fitted()
        return predict_table(self.final_models_, new_rows)

    def confidence_intervals(self, level=0.95):
        """Coefficient intervals for each final model."""
        self._check_fitted()
        return confidence_interval_tables(self.final_models_, level)

    def get_score_table(self):
        self._check_fitted()
        return self.scores_.copy()

    # ---- Step implementations --------------------------------------------

    def _fit_all(self, spec, train):
        """Fit ``spec`` to every response; results keyed by response."""
        fits = Parallel(n_jobs=self.n_jobs)(
            delayed(fit)(spec, train, response=r) for r in self.responses
        )
        return dict(zip(self.responses, fits))

    def _cv_all(self, spec, train, ridge_lambda=None):
        return {
            r: cv_mse(spec, train, k=self.cv_folds, seed=self.random_state,
                      response=r, ridge_lambda=ridge_lambda,
                      n_jobs=self.n_jobs)
            for r in self.responses
        }

    def _step1_transform(self, train, verbose):
        """Main effects, degree 1: identity vs log."""
        base = DesignSpec(transform='identity', degree=1, main_effects=FACTORS)
        identity_fits = self._fit_all(base, train)
        log_fits = self._fit_all(base.replace(transform='log'), train)

        rows = []
        for r in self.responses:
            adj_id = score(identity_fits[r]).adj_r2
            adj_log = score(log_fits[r]).adj_r2
            rows.append({'Response': r, 'AdjR2_identity': adj_id,
                         'AdjR2_log': adj_log,
                         'Log_better': adj_log > adj_id})
        df = pd.DataFrame(rows)
        transform = choose_transform(df['AdjR2_identity'], df['AdjR2_log'])

        if verbose:
            print()
            for _, row in df.iterrows():
                print(f"  {row['Response']:14s}  identity adjR²="
                      f"{row['AdjR2_identity']:.4f}  log adjR²="
                      f"{row['AdjR2_log']:.4f}  "
                      f"{'log' if row['Log_better'] else 'identity'}")
            print(f"\n  Chosen transform: {transform}")
            print()

        return {'results_df': df, 'transform': transform}

    def _step2_interactions(self, train, verbose):
        """Test each interaction alone against the main-effects model."""
        base = DesignSpec(transform=self.transform_, degree=1,
                          main_effects=FACTORS)
        base_fits = self._fit_all(base, train)

        rows = []
        retained = []
        for term in INTERACTIONS:
            cand_fits = self._fit_all(base.replace(interactions=(term,)),
                                      train)
            significant = []
            for r in self.responses:
                table = anova_table([base_fits[r], cand_fits[r]])
                f_stat = table['F'].iloc[1]
                p_value = table['Pr(>F)'].iloc[1]
                sig = bool(p_value < self.alpha)
                significant.append(sig)
                rows.append({'Interaction': term, 'Response': r,
                             'F': f_stat, 'p_value': p_value,
                             'Significant': sig})
            keep = _retain(significant, self.interaction_rule)
            if keep:
                retained.append(term)

            if verbose:
                flags = ''.join('+' if s else '.' for s in significant)
                print(f"  {term:14s}  significant for [{flags}]  "
                      f"{'Retain' if keep else 'Drop'}")

        if verbose:
            print(f"\n  Retained: {retained if retained else 'none'}")
            print()

        return {'results_df': pd.DataFrame(rows), 'retained': tuple(retained)}

    def _max_testable_degree(self, train, spec):
        n_unique = np.unique(train['St'].to_numpy()).size
        p1 = len(fit(spec.replace(degree=1), train,
                     response=self.responses[0]).terms)
        # largest fit needs one residual degree of freedom
        limit = min(self.max_degree, n_unique - 1, len(train) - p1)
        if limit < self.max_degree:
            warnings.warn(
                f"Degree search capped at {max(limit, 1)} (max_degree="
                f"{self.max_degree}): {n_unique} distinct St values, "
                f"{len(train)} rows.",
                stacklevel=3,
            )
        return max(limit, 1)

    def _step3_degree(self, train, verbose):
        """Sequential ANOVA over St degree, aligned across responses."""
        spec = DesignSpec(transform=self.transform_, degree=1,
                          main_effects=FACTORS,
                          interactions=self.interactions_)
        top = self._max_testable_degree(train, spec)
        degrees = list(range(1, top + 1))

        fits = {r: [] for r in self.responses}
        for d in degrees:
            for r, mdl in self._fit_all(spec.replace(degree=d), train).items():
                fits[r].append(mdl)

        tables = {}
        chosen = {}
        path = []
        for r in self.responses:
            if len(degrees) > 1:
                table = anova_table(fits[r])
            else:
                table = pd.DataFrame({'Res.Df': [fits[r][0].df_resid],
                                      'RSS': [fits[r][0].rss],
                                      'F': [np.nan], 'Pr(>F)': [np.nan]})
            table.insert(0, 'Degree', degrees)
            tables[r] = table

            pvals = table['Pr(>F)'].to_numpy()
            chosen[r] = degrees[-1]
            for i in range(1, len(degrees)):
                if not pvals[i] < self.alpha:
                    chosen[r] = degrees[i - 1]
                    break

            for d, mdl in zip(degrees, fits[r]):
                rec = score(mdl)
                path.append({'Response': r, 'Degree': d, 'RSS': rec.rss,
                             'AdjR2': rec.adj_r2, 'AIC': rec.aic,
                             'BIC': rec.bic})

        degree = min(chosen.values())

        if verbose:
            print()
            for r in self.responses:
                pv = '  '.join(
                    f"{p:.3g}" for p in tables[r]['Pr(>F)'].iloc[1:])
                print(f"  {r:14s}  degree={chosen[r]}  p: {pv}")
            print(f"\n  Shared degree (minimum across responses): {degree}")
            print()

        return {
            'anova_tables': tables,
            'degree_by_response': chosen,
            'degree': degree,
            'path_df': pd.DataFrame(path),
        }

    def _step4_ridge(self, train, verbose):
        """Per-response ridge penalty search against OLS CV error."""
        ols_cv = self._cv_all(self.final_spec_, train)

        rows = []
        paths = {}
        for r in self.responses:
            best, path = select_ridge_lambda(
                self.final_spec_, train, r, lambdas=self.ridge_lambdas,
                k=self.cv_folds, seed=self.random_state, n_jobs=self.n_jobs)
            paths[r] = path
            ridge_mse = float(path['cv_mse'].min())
            rows.append({'Response': r, 'Lambda': best,
                         'Ridge_CV_MSE': ridge_mse,
                         'OLS_CV_MSE': ols_cv[r],
                         'Ridge_better': ridge_mse < ols_cv[r]})
            if verbose:
                print(f"  {r:14s}  lambda={best:.3g}  ridge CV MSE="
                      f"{ridge_mse:.5g}  OLS CV MSE={ols_cv[r]:.5g}")

        if verbose:
            print()
        return {'results_df': pd.DataFrame(rows), 'paths': paths,
                'ols_cv_mse': ols_cv}

    def _feasible_spline_dfs(self, train):
        """Spline sizes whose knots exist on the full data and every CV fold."""
        st = train['St'].to_numpy(dtype=np.float64)
        folds = fold_assignments(len(train), self.cv_folds, self.random_state)
        fold_unique = [np.unique(st[folds != f]).size
                       for f in range(self.cv_folds)]
        n_unique = min([np.unique(st).size] + fold_unique)

        dfs = [df for df in self.spline_dfs if df + 1 <= n_unique]
        skipped = [df for df in self.spline_dfs if df not in dfs]
        if skipped:
            warnings.warn(
                f"Skipping spline df {skipped}: the training rows or one "
                f"of their CV folds have only {n_unique} distinct St "
                "values.", stacklevel=4)
        return dfs

    def _step5_splines(self, train, verbose):
        """Natural-spline St bases compared by CV MSE."""
        poly_cv = self.step4_results_.get('ols_cv_mse') \
            if self.step4_results_ else None
        if not poly_cv:
            poly_cv = self._cv_all(self.final_spec_, train)

        rows = []
        for df in self._feasible_spline_dfs(train):
            spec = self.final_spec_.replace(basis='spline', spline_df=df)
            try:
                spline_cv = self._cv_all(spec, train)
            except CrossValidationError as exc:
                if not isinstance(exc.__cause__, RankDeficiencyError):
                    raise
                warnings.warn(f"Skipping spline df={df}: {exc}",
                              stacklevel=3)
                continue
            for r, mse in spline_cv.items():
                rows.append({'Response': r, 'Spline_df': df,
                             'Spline_CV_MSE': mse,
                             'Poly_CV_MSE': poly_cv[r]})
        df = pd.DataFrame(rows)

        if verbose:
            if len(df):
                best = df.loc[df.groupby('Response')['Spline_CV_MSE']
                              .idxmin()]
                for _, row in best.iterrows():
                    print(f"  {row['Response']:14s}  best df="
                          f"{int(row['Spline_df'])}  spline CV MSE="
                          f"{row['Spline_CV_MSE']:.5g}  poly CV MSE="
                          f"{row['Poly_CV_MSE']:.5g}")
            else:
                print("  No spline size fits the distinct St values")
            print()

        return {'results_df': df}

    # ---- internal helpers ------------------------------------------------

    def _compile(self, train):
        self.final_models_ = self._fit_all(self.final_spec_, train)
        ols_cv = (self.step4_results_ or {}).get('ols_cv_mse', {})
        cv = {(self.final_spec_.spec_id, r): mse for r, mse in ols_cv.items()}
        self.scores_ = score_table(self.final_models_.values(), cv_mse=cv)

    def _print_summary(self):
        print()
        print("=" * 70)
        print("FINAL MODEL SUMMARY")
        print("=" * 70)
        print(f"\n  Shared design : {self.final_spec_.spec_id}")
        print(f"  Terms         : "
              f"{len(next(iter(self.final_models_.values())).terms)}")
        print("\nPer-response fit:")
        print("-" * 70)
        print(f"  {'Response':14s}  {'R²':>8s}  {'adjR²':>8s}  "
              f"{'AIC':>10s}  {'BIC':>10s}  {'CV MSE':>10s}")
        for _, row in self.scores_.iterrows():
            print(f"  {row['response']:14s}  {row['r2']:>8.4f}  "
                  f"{row['adj_r2']:>8.4f}  {row['aic']:>10.2f}  "
                  f"{row['bic']:>10.2f}  {row['cv_mse']:>10.4g}")
        print(f"\n  Runtime       : {self.runtime_:.2f}s")
        print("=" * 70)

    def _check_fitted(self):
        if not self._is_fitted:
            raise RuntimeError(
                "Selector has not been fitted. Call .fit(train) first."
            )
