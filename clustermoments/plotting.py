"""
Diagnostic figures for fitted models and the degree search.

Functions return matplotlib figures and never call ``plt.show()``.
"""

import numpy as np
import matplotlib.pyplot as plt
from scipy import stats


def plot_diagnostics(fitted_model, figsize=(12, 5)):
    """
    Residuals-vs-fitted and normal Q-Q panels for one fitted model.

    Both panels are on the modelling scale, which is where the identity
    vs log comparison is read from (a funnel in the identity residuals
    that disappears under log).
    """
    fitted = np.asarray(fitted_model.fitted)
    resid = np.asarray(fitted_model.residuals)

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=figsize)

    ax1.scatter(fitted, resid, alpha=0.5, s=12, color='steelblue')
    ax1.axhline(0.0, color='r', ls='--', lw=1.5)
    order = np.argsort(fitted)
    if len(fitted) >= 5:
        window = max(len(fitted) // 10, 3)
        smooth = np.convolve(resid[order], np.ones(window) / window,
                             mode='same')
        ax1.plot(fitted[order], smooth, color='#fb923c', lw=2,
                 label='Running mean')
        ax1.legend(fontsize=8, loc='best')
    ax1.set_xlabel("Fitted value")
    ax1.set_ylabel("Residual")
    ax1.set_title("Residuals vs Fitted")
    ax1.grid(True, alpha=0.3)

    (osm, osr), (slope, intercept, _) = stats.probplot(resid, dist='norm')
    ax2.scatter(osm, osr, alpha=0.5, s=12, color='steelblue')
    ax2.plot(osm, slope * np.asarray(osm) + intercept, 'r-', lw=1.5)
    ax2.set_xlabel("Theoretical quantile")
    ax2.set_ylabel("Ordered residual")
    ax2.set_title("Normal Q-Q")
    ax2.grid(True, alpha=0.3)

    fig.suptitle(f"{fitted_model.response}: {fitted_model.spec.spec_id}",
                 fontsize=12)
    fig.tight_layout()
    return fig


def plot_degree_selection(selector, figsize=(12, 5)):
    """RSS and adjusted R^2 against St degree, one line per response."""
    if getattr(selector, 'step3_results_', None) is None:
        raise RuntimeError(
            "Selector has no degree search results; call .fit(train) first.")
    path = selector.step3_results_['path_df']
    degree = selector.step3_results_['degree']

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=figsize)
    for response, grp in path.groupby('Response', sort=False):
        ax1.plot(grp['Degree'], grp['RSS'], 'o-', lw=1.5, label=response)
        ax2.plot(grp['Degree'], grp['AdjR2'], 'o-', lw=1.5, label=response)

    for ax, label in ((ax1, 'RSS (modelling scale)'), (ax2, 'Adjusted R²')):
        ax.axvline(degree, color='#6b7280', ls='--', lw=1.2,
                   label=f'Chosen degree ({degree})')
        ax.set_xlabel("St polynomial degree")
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.3)
        ax.legend(fontsize=8, loc='best')

    ax1.set_yscale('log')
    fig.suptitle("Sequential degree selection", fontsize=12)
    fig.tight_layout()
    return fig
