"""Spatial dependence range from a fitted semivariogram.

Responses are first moved towards normality with Tukey's ladder of powers,
then an empirical (Matheron) semivariogram is computed over equal-width lag
bins and spherical, exponential and Gaussian models are fitted by bounded
non-linear least squares. The model with the smallest residual sum of squares
provides the practical range, i.e. the distance at which the fitted model
reaches (about) its sill.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import warnings

import numpy as np
from scipy import stats
from scipy.optimize import curve_fit
from scipy.spatial.distance import pdist

from toc_mapping.config.settings import VariogramConfig
from toc_mapping.exceptions import FitError, InputError, InsufficientDataWarning
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("variogram")

_LAMBDAS = np.round(np.arange(-2.0, 2.0 + 1e-9, 0.025), 3)


def tukey_transform(values: np.ndarray, lam: float) -> np.ndarray:
    """Apply one rung of Tukey's ladder: x^l, log(x) for l=0, -(x^l) for l<0."""
    values = np.asarray(values, dtype=float)
    if lam > 0:
        return values**lam
    if lam == 0:
        return np.log(values)
    return -(values**lam)


def tukey_ladder(
    values: np.ndarray,
    config: VariogramConfig | None = None,
    random_state: int | None = None,
) -> tuple[np.ndarray, float]:
    """Transform values with the ladder exponent maximising the Shapiro-Wilk W.

    The exponent is searched on a random sample of at most
    ``config.max_normality_sample`` values and applied to all values.

    Returns:
        Tuple of (transformed values, chosen exponent)
    """
    config = config or VariogramConfig()
    values = np.asarray(values, dtype=float)
    if values.min() <= 0:
        # the ladder is only defined for positive values
        values = values - values.min() + 1e-3 * (np.ptp(values) or 1.0)

    rng = np.random.default_rng(random_state)
    sample = values
    if len(values) > config.max_normality_sample:
        sample = rng.choice(values, size=config.max_normality_sample, replace=False)

    best_lambda, best_w = 1.0, -np.inf
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        for lam in _LAMBDAS:
            transformed = tukey_transform(sample, float(lam))
            if not np.all(np.isfinite(transformed)) or np.ptp(transformed) == 0:
                continue
            w_stat = stats.shapiro(transformed).statistic
            if w_stat > best_w:
                best_lambda, best_w = float(lam), w_stat

    logger.info(f"Tukey ladder exponent {best_lambda:g} (Shapiro-Wilk W={best_w:.3f})")
    return tukey_transform(values, best_lambda), best_lambda


@dataclass(frozen=True)
class EmpiricalVariogram:
    """Matheron semivariance per lag bin (bins with too few pairs removed)."""

    lags: np.ndarray
    semivariance: np.ndarray
    counts: np.ndarray


def empirical_variogram(
    coordinates: np.ndarray,
    values: np.ndarray,
    n_lags: int = 15,
    max_lag_fraction: float = 1.0 / 3.0,
    min_pairs: int = 10,
) -> EmpiricalVariogram:
    """Compute gamma(h) = SSD(h) / (2 N(h)) over equal-width distance bins.

    Args:
        coordinates: (N, 2) projected coordinates
        values: Transformed response values
        n_lags: Number of lag bins
        max_lag_fraction: Largest lag as a fraction of the extent diagonal
        min_pairs: Bins with fewer pairs are discarded

    Returns:
        EmpiricalVariogram with lag centres, semivariance and pair counts
    """
    coordinates = np.asarray(coordinates, dtype=float)
    values = np.asarray(values, dtype=float)
    extent = coordinates.max(axis=0) - coordinates.min(axis=0)
    max_lag = float(np.hypot(*extent)) * max_lag_fraction
    if max_lag <= 0:
        raise InputError("Observations share a single location", stage="variogram")

    distances = pdist(coordinates)
    squared_diff = pdist(values[:, None], metric="sqeuclidean")
    edges = np.linspace(0.0, max_lag, n_lags + 1)
    bins = np.digitize(distances, edges) - 1
    in_range = (bins >= 0) & (bins < n_lags) & (distances > 0)

    counts = np.bincount(bins[in_range], minlength=n_lags)
    ssd = np.bincount(bins[in_range], weights=squared_diff[in_range], minlength=n_lags)
    lag_sum = np.bincount(bins[in_range], weights=distances[in_range], minlength=n_lags)

    keep = counts >= min_pairs
    with np.errstate(invalid="ignore", divide="ignore"):
        gamma = ssd / (2.0 * counts)
        lags = lag_sum / counts
    return EmpiricalVariogram(lags=lags[keep], semivariance=gamma[keep], counts=counts[keep])


def spherical_model(h: np.ndarray, nugget: float, psill: float, range_: float) -> np.ndarray:
    """Spherical model; reaches the sill exactly at ``range_``."""
    ratio = np.minimum(np.asarray(h, dtype=float) / range_, 1.0)
    return nugget + psill * (1.5 * ratio - 0.5 * ratio**3)


def exponential_model(h: np.ndarray, nugget: float, psill: float, range_: float) -> np.ndarray:
    """Exponential model parameterised by its practical (95 %) range."""
    return nugget + psill * (1.0 - np.exp(-3.0 * np.asarray(h, dtype=float) / range_))


def gaussian_model(h: np.ndarray, nugget: float, psill: float, range_: float) -> np.ndarray:
    """Gaussian model parameterised by its practical (95 %) range."""
    h = np.asarray(h, dtype=float)
    return nugget + psill * (1.0 - np.exp(-3.0 * h**2 / range_**2))


VARIOGRAM_MODELS: dict[str, Callable[..., np.ndarray]] = {
    "spherical": spherical_model,
    "exponential": exponential_model,
    "gaussian": gaussian_model,
}


@dataclass(frozen=True)
class VariogramFit:
    """Best fitting theoretical model."""

    model: str
    nugget: float
    psill: float
    range: float
    rss: float
    candidates: dict[str, float] = field(default_factory=dict)

    @property
    def sill(self) -> float:
        return self.nugget + self.psill


def _initial_guesses(empirical: EmpiricalVariogram) -> list[list[float]]:
    """Starting values spread over plausible nugget/range combinations."""
    gamma = empirical.semivariance
    max_lag = float(empirical.lags.max())
    sill = float(np.max(gamma))
    nugget = float(max(np.min(gamma), 0.0))
    return [
        [nugget * fraction, max(sill - nugget * fraction, 1e-9), max_lag * r]
        for fraction in (0.0, 0.5, 1.0)
        for r in (0.1, 0.33, 0.66)
    ]


def fit_variogram(
    empirical: EmpiricalVariogram,
    models: list[str] | None = None,
) -> VariogramFit:
    """Fit theoretical models and keep the one with the lowest residual sum of squares.

    Raises:
        FitError: Too few lag bins, or no model converged.
    """
    models = models or list(VARIOGRAM_MODELS)
    if len(empirical.lags) < 3:
        raise FitError(
            f"Only {len(empirical.lags)} lag bins with enough pairs; cannot fit a variogram",
            stage="variogram",
        )

    lags, gamma = empirical.lags, empirical.semivariance
    max_lag = float(lags.max())
    upper_sill = float(np.max(gamma)) * 2.0 + 1e-9
    bounds = ([0.0, 0.0, max_lag * 1e-3], [upper_sill, upper_sill, max_lag * 10.0])

    best: tuple[str, np.ndarray, float] | None = None
    candidates: dict[str, float] = {}
    for name in models:
        model = VARIOGRAM_MODELS[name]
        model_best: tuple[np.ndarray, float] | None = None
        for p0 in _initial_guesses(empirical):
            p0 = np.clip(p0, bounds[0], bounds[1])
            try:
                popt, _ = curve_fit(
                    model, lags, gamma, p0=p0, bounds=bounds, method="trf", maxfev=10000
                )
            except (RuntimeError, ValueError):
                continue
            rss = float(np.sum((model(lags, *popt) - gamma) ** 2))
            if model_best is None or rss < model_best[1]:
                model_best = (popt, rss)

        if model_best is None:
            logger.warning(f"Variogram model '{name}' did not converge")
            continue
        candidates[name] = model_best[1]
        if best is None or model_best[1] < best[2]:
            best = (name, model_best[0], model_best[1])

    if best is None:
        raise FitError("No variogram model converged", stage="variogram")

    name, popt, rss = best
    return VariogramFit(
        model=name,
        nugget=float(popt[0]),
        psill=float(popt[1]),
        range=float(popt[2]),
        rss=rss,
        candidates=candidates,
    )


@dataclass(frozen=True)
class DependenceRange:
    """Spatial autocorrelation range and how it was obtained."""

    range: float
    fit: VariogramFit | None
    lambda_: float | None
    n_observations: int
    used_fallback: bool = False


def estimate_dependence_range(
    coordinates: np.ndarray,
    response: np.ndarray,
    config: VariogramConfig | None = None,
    random_state: int | None = None,
) -> DependenceRange:
    """Estimate the distance beyond which spatial autocorrelation is negligible.

    Args:
        coordinates: (N, 2) projected coordinates [m]
        response: Untransformed TOC values
        config: Variogram settings, including an optional fallback range
        random_state: Seed for the normality sample

    Returns:
        DependenceRange

    Raises:
        FitError: Fitting failed and no fallback range is configured.
    """
    config = config or VariogramConfig()
    coordinates = np.asarray(coordinates, dtype=float)
    response = np.asarray(response, dtype=float)
    n_obs = len(response)

    if n_obs < config.min_observations:
        message = (
            f"Only {n_obs} observations for variogram fitting "
            f"(recommended >= {config.min_observations}); the range is unreliable"
        )
        logger.warning(message)
        warnings.warn(message, InsufficientDataWarning, stacklevel=2)

    lam: float | None = None
    try:
        transformed, lam = tukey_ladder(response, config, random_state)
        empirical = empirical_variogram(
            coordinates,
            transformed,
            n_lags=config.n_lags,
            max_lag_fraction=config.max_lag_fraction,
            min_pairs=config.min_pairs,
        )
        fit = fit_variogram(empirical, config.models)
    except FitError as e:
        if config.fallback_range is None:
            raise
        logger.warning(f"Variogram fit failed ({e}); using fallback range {config.fallback_range:g}")
        return DependenceRange(
            range=config.fallback_range,
            fit=None,
            lambda_=lam,
            n_observations=n_obs,
            used_fallback=True,
        )

    logger.info(
        f"Best variogram: {fit.model} (range={fit.range:.1f}, nugget={fit.nugget:.4g}, "
        f"sill={fit.sill:.4g}, RSS={fit.rss:.4g})"
    )
    return DependenceRange(range=fit.range, fit=fit, lambda_=lam, n_observations=n_obs)
