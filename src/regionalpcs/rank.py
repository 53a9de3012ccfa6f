"""Choose how many principal components of a region are signal.

Both methods compare the singular values of a centered sites x samples matrix
against the largest singular value pure noise of the same shape would produce:

    gd: Gavish & Donoho (2014), "The Optimal Hard Threshold for Singular
        Values is 4/sqrt(3)", with the noise level unknown and estimated from
        the median singular value.
    mp: The Marcenko-Pastur bulk edge, with the noise level estimated from the
        median singular value rescaled by the median of the Marcenko-Pastur law.
"""

from functools import lru_cache

# Third party modules
import numpy as np
from scipy import integrate, optimize

METHODS = ("gd", "mp")

# Below this, a singular value is treated as exactly zero
ZERO_TOLERANCE = 1e-10


def validate_method(method: str) -> str:
    """Return the method if it is supported.

    Raises
    -------
    ValueError
        If the method is not one of METHODS.
    """
    if method not in METHODS:
        raise ValueError(
            f"Unknown method {method!r}, expected one of: {', '.join(METHODS)}"
        )
    return method


def aspect_ratio(shape: tuple[int, int]) -> float:
    """min(n, p) / max(n, p) for a matrix shape."""
    return min(shape) / max(shape)


def _marcenko_pastur_density(x: float, gamma: float) -> float:
    lower = (1 - np.sqrt(gamma)) ** 2
    upper = (1 + np.sqrt(gamma)) ** 2
    if x <= lower or x >= upper:
        return 0.0
    return np.sqrt((upper - x) * (x - lower)) / (2 * np.pi * gamma * x)


@lru_cache(maxsize=1024)
def marcenko_pastur_median(gamma: float) -> float:
    """Median of the Marcenko-Pastur law with unit noise variance.

    Args
    ----------
    gamma : float
        Aspect ratio, 0 < gamma <= 1.

    Returns
    -------
    float
        The value mu such that half the law's mass lies below it.
    """
    if not 0 < gamma <= 1:
        raise ValueError(f"Aspect ratio must be in (0, 1], got {gamma}")

    lower = (1 - np.sqrt(gamma)) ** 2
    upper = (1 + np.sqrt(gamma)) ** 2

    def mass_below(x: float) -> float:
        return (
            integrate.quad(_marcenko_pastur_density, lower, x, args=(gamma,), limit=200)[0]
            - 0.5
        )

    return float(optimize.brentq(mass_below, lower, upper, xtol=1e-12))


def gavish_donoho_omega(beta: float, exact: bool = False) -> float:
    """Optimal hard threshold coefficient for unknown noise.

    The threshold on singular values is omega(beta) * median(singular values).

    Args
    ----------
    beta : float
        Aspect ratio, 0 < beta <= 1.
    exact : bool, optional
        Use lambda*(beta) / sqrt(median of Marcenko-Pastur) instead of the
        published cubic approximation 0.56b^3 - 0.95b^2 + 1.82b + 1.43.

    Returns
    -------
    float
    """
    if not 0 < beta <= 1:
        raise ValueError(f"Aspect ratio must be in (0, 1], got {beta}")

    if not exact:
        return 0.56 * beta**3 - 0.95 * beta**2 + 1.82 * beta + 1.43

    lambda_star = np.sqrt(
        2 * (beta + 1) + 8 * beta / ((beta + 1) + np.sqrt(beta**2 + 14 * beta + 1))
    )
    return float(lambda_star / np.sqrt(marcenko_pastur_median(beta)))


def gavish_donoho_threshold(singular_values: np.ndarray, shape: tuple[int, int]) -> float:
    """Singular values above this are signal under Gavish-Donoho."""
    return gavish_donoho_omega(aspect_ratio(shape)) * float(np.median(singular_values))


def marcenko_pastur_threshold(
    singular_values: np.ndarray, shape: tuple[int, int]
) -> float:
    """The predicted Marcenko-Pastur bulk edge for singular values."""
    gamma = aspect_ratio(shape)
    sigma = float(np.median(singular_values)) / np.sqrt(marcenko_pastur_median(gamma))
    return sigma * (1 + np.sqrt(gamma))


def estimate_rank(
    singular_values: np.ndarray,
    shape: tuple[int, int],
    method: str = "gd",
) -> int:
    """Estimate the number of significant components of a centered matrix.

    Args
    ----------
    singular_values : np.ndarray
        Singular values of the centered sites x samples matrix, descending.
    shape : tuple[int, int]
        (n_sites, n_samples) of that matrix. Both must be at least 2.
    method : str, optional
        "gd" (Gavish-Donoho) or "mp" (Marcenko-Pastur).

    Returns
    -------
    int
        k, with 1 <= k <= min(n_sites, n_samples) - 1.

    Raises
    -------
    ValueError
        If the method is unknown or the matrix is smaller than 2 x 2.
    """
    validate_method(method)
    n_sites, n_samples = shape
    if n_sites < 2 or n_samples < 2:
        raise ValueError(f"Rank estimation needs at least a 2 x 2 matrix, got {shape}")

    max_rank = min(n_sites, n_samples) - 1

    # Centering removes one degree of freedom across samples
    s = np.sort(np.asarray(singular_values, dtype=float))[::-1]
    s = s[: min(n_sites, n_samples - 1)]

    if s.size == 0 or s[0] <= ZERO_TOLERANCE:
        return 1

    if method == "gd":
        threshold = gavish_donoho_threshold(s, shape)
    else:
        threshold = marcenko_pastur_threshold(s, shape)

    # Never count values that are zero to working precision
    threshold = max(threshold, s[0] * max(shape) * np.finfo(float).eps, ZERO_TOLERANCE)

    k = int(np.sum(s > threshold))
    return min(max(k, 1), max_rank)
