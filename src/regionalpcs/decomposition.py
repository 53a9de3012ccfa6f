"""Principal components of a single region."""

from dataclasses import dataclass, field

# Third party modules
import numpy as np

from regionalpcs.rank import ZERO_TOLERANCE, estimate_rank, validate_method


class RegionDecompositionError(Exception):
    """Raised when a region's matrix cannot be decomposed.

    The reason code ends up in the skipped regions of the final result.
    """

    def __init__(self, region_id: str, reason: str, message: str = ""):
        self.region_id = region_id
        self.reason = reason
        super().__init__(message or f"Region {region_id}: {reason}")


@dataclass
class RegionResult:
    """Principal components for one region.

    scores are (k, n_samples), loadings are (n_sites, k) and singular_values
    holds the full spectrum of the centered matrix, descending.
    """

    region_id: str
    k: int
    site_ids: list[str]
    scores: np.ndarray
    loadings: np.ndarray
    singular_values: np.ndarray
    method: str
    degenerate: bool = False
    percent_variance: np.ndarray = field(default_factory=lambda: np.empty(0))

    @property
    def component_labels(self) -> list[str]:
        return [f"{self.region_id}-PC{i + 1}" for i in range(self.k)]


def center_rows(values: np.ndarray) -> np.ndarray:
    """Subtract each site's mean across samples. Returns a new array."""
    return values - values.mean(axis=1, keepdims=True)


def fix_signs(u: np.ndarray, vt: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Make each loading vector's largest-magnitude entry positive.

    The matching row of vt is flipped along with it, so u @ diag(s) @ vt is
    unchanged. The first entry wins ties.
    """
    largest = np.argmax(np.abs(u), axis=0)
    signs = np.sign(u[largest, np.arange(u.shape[1])])
    signs[signs == 0] = 1.0
    return u * signs, vt * signs[:, np.newaxis]


def percent_variance(singular_values: np.ndarray, k: int) -> np.ndarray:
    """Percent of the region's total variance held by each of the top-k components.

    A flat region (top singular value at or below ZERO_TOLERANCE) explains
    nothing, so its percentages are all zero.
    """
    s = np.asarray(singular_values, dtype=float)
    if s.size == 0 or s.max() <= ZERO_TOLERANCE:
        return np.zeros(k)
    variances = s**2
    total = variances.sum()
    return 100.0 * variances[:k] / total


def _degenerate_region(
    region_id: str, site_ids: list[str], values: np.ndarray, method: str
) -> RegionResult:
    # One site: the site itself is the region's only component
    centered = center_rows(values)
    singular_values = np.array([np.linalg.norm(centered[0])])
    return RegionResult(
        region_id=region_id,
        k=1,
        site_ids=list(site_ids),
        scores=values.astype(float, copy=True),
        loadings=np.ones((1, 1)),
        singular_values=singular_values,
        method=method,
        degenerate=True,
        percent_variance=percent_variance(singular_values, 1),
    )


def decompose_region(
    region_id: str,
    site_ids: list[str],
    values: np.ndarray,
    method: str = "gd",
) -> RegionResult:
    """Compute the significant principal components of one region.

    Args
    ----------
    region_id : str
        The region id, used for component labels.
    site_ids : list[str]
        Row ids of values.
    values : np.ndarray
        The region's (n_sites, n_samples) block of the methylation matrix.
        It is not modified.
    method : str, optional
        Rank estimation method, "gd" or "mp".

    Returns
    -------
    RegionResult

    Raises
    -------
    RegionDecompositionError
        If the block holds non-finite values or the SVD fails to converge.
    """
    validate_method(method)
    values = np.asarray(values, dtype=float)
    assert values.ndim == 2, "Region values must be a 2D (sites x samples) array"
    assert values.shape[0] == len(site_ids), "One row per site id expected"

    if not np.all(np.isfinite(values)):
        raise RegionDecompositionError(
            region_id, "non_finite", f"Region {region_id} has non-finite values"
        )

    if values.shape[0] < 2:
        return _degenerate_region(region_id, site_ids, values, method)

    centered = center_rows(values)
    try:
        u, s, vt = np.linalg.svd(centered, full_matrices=False)
    except np.linalg.LinAlgError as exc:
        raise RegionDecompositionError(
            region_id, "svd_failed", f"SVD failed for region {region_id}: {exc}"
        ) from exc

    k = estimate_rank(s, centered.shape, method=method)

    loadings, vt_k = fix_signs(u[:, :k], vt[:k])
    scores = s[:k, np.newaxis] * vt_k

    return RegionResult(
        region_id=region_id,
        k=k,
        site_ids=list(site_ids),
        scores=scores,
        loadings=loadings,
        singular_values=s,
        method=method,
        percent_variance=percent_variance(s, k),
    )
