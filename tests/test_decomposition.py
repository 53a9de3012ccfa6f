import numpy as np
import pytest
from regionalpcs import decomposition

RNG = np.random.default_rng(11)

# Two correlated blocks of sites across 12 samples
LATENT = RNG.standard_normal((2, 12))
TEST_VALUES = np.vstack(
    [
        np.outer([1.0, 0.9, 1.1, 0.8], LATENT[0]),
        np.outer([1.0, -1.2, 0.7], LATENT[1]),
    ]
) + 0.05 * RNG.standard_normal((7, 12))
TEST_SITES = [f"chr1_{100 * i}_{100 * i + 1}_cg{i}" for i in range(7)]


def test_center_rows() -> None:
    """Test center_rows returns a new array with zero row means."""

    values = np.array([[1.0, 2.0, 3.0], [5.0, 5.0, 5.0]])
    centered = decomposition.center_rows(values)

    np.testing.assert_allclose(centered, [[-1.0, 0.0, 1.0], [0.0, 0.0, 0.0]])
    assert values[0, 0] == 1.0


def test_fix_signs() -> None:
    """The largest-magnitude loading entry is made positive, vt flips with it."""

    u = np.array([[0.6, 0.1], [-0.8, 0.2], [0.0, -0.97]])
    vt = np.array([[1.0, 2.0], [3.0, 4.0]])

    u_fixed, vt_fixed = decomposition.fix_signs(u, vt)

    np.testing.assert_array_equal(u_fixed[:, 0], [-0.6, 0.8, 0.0])
    np.testing.assert_array_equal(u_fixed[:, 1], [-0.1, -0.2, 0.97])
    np.testing.assert_array_equal(vt_fixed, [[-1.0, -2.0], [-3.0, -4.0]])
    np.testing.assert_allclose(u_fixed @ vt_fixed, u @ vt)


def test_percent_variance() -> None:
    """Test percent_variance."""

    np.testing.assert_allclose(
        decomposition.percent_variance(np.array([3.0, 1.0, 0.0]), 2), [90.0, 10.0]
    )
    np.testing.assert_array_equal(decomposition.percent_variance(np.zeros(3), 1), [0.0])
    np.testing.assert_array_equal(
        decomposition.percent_variance(np.array([4.7e-16, 1e-17]), 1), [0.0]
    )


def test_decompose_region() -> None:
    """Two latent factors give two components with orthonormal loadings."""

    result = decomposition.decompose_region("GENE1", TEST_SITES, TEST_VALUES, method="gd")

    assert result.region_id == "GENE1"
    assert result.k == 2
    assert result.component_labels == ["GENE1-PC1", "GENE1-PC2"]
    assert result.scores.shape == (2, 12)
    assert result.loadings.shape == (7, 2)
    assert result.singular_values.shape == (7,)
    assert not result.degenerate

    # Orthonormal loadings
    np.testing.assert_allclose(result.loadings.T @ result.loadings, np.eye(2), atol=1e-12)

    # Scores are the centered data projected on the loadings
    centered = decomposition.center_rows(TEST_VALUES)
    np.testing.assert_allclose(result.scores, result.loadings.T @ centered, atol=1e-12)

    # Descending singular values, sign convention applied
    assert np.all(np.diff(result.singular_values) <= 0)
    for i in range(result.k):
        column = result.loadings[:, i]
        assert column[np.argmax(np.abs(column))] > 0

    assert result.percent_variance.shape == (2,)
    assert result.percent_variance.sum() == pytest.approx(
        100 * np.sum(result.singular_values[:2] ** 2) / np.sum(result.singular_values**2)
    )


def test_decompose_region_does_not_modify_input() -> None:
    """The input block is left untouched."""

    values = TEST_VALUES.copy()
    decomposition.decompose_region("GENE1", TEST_SITES, values)
    np.testing.assert_array_equal(values, TEST_VALUES)


def test_decompose_region_deterministic() -> None:
    """Repeated runs are bit-identical, including signs."""

    first = decomposition.decompose_region("GENE1", TEST_SITES, TEST_VALUES)
    second = decomposition.decompose_region("GENE1", TEST_SITES, TEST_VALUES.copy())

    np.testing.assert_array_equal(first.scores, second.scores)
    np.testing.assert_array_equal(first.loadings, second.loadings)


def test_decompose_region_single_site() -> None:
    """A single site is its own component, unchanged."""

    values = np.array([[0.1, 0.5, 0.3, 0.9]])
    result = decomposition.decompose_region("GENE2", ["chr1_5_6_cg1"], values, method="mp")

    assert result.degenerate
    assert result.k == 1
    assert result.method == "mp"
    np.testing.assert_array_equal(result.scores, values)
    np.testing.assert_array_equal(result.loadings, [[1.0]])
    assert result.singular_values[0] == pytest.approx(
        np.linalg.norm(values[0] - values[0].mean())
    )
    np.testing.assert_array_equal(result.percent_variance, [100.0])


def test_decompose_region_zero_variance_site() -> None:
    """A constant site gets no weight and no division by zero happens."""

    values = np.vstack(
        [np.outer([1.0, 0.9, 1.1, 0.8], LATENT[0]), np.full((1, 12), 0.5)]
    )
    result = decomposition.decompose_region("GENE3", TEST_SITES[:5], values)

    assert result.k == 1
    assert np.all(np.isfinite(result.scores))
    assert result.loadings[4, 0] == pytest.approx(0.0, abs=1e-12)
    assert result.singular_values[-1] == pytest.approx(0.0, abs=1e-10)


@pytest.mark.parametrize("constant", [0.1, 0.3, 0.7, 0.93])
def test_decompose_region_all_constant(constant) -> None:
    """A region of constant sites gives one all-zero component explaining nothing."""

    values = np.full((3, 6), constant)
    result = decomposition.decompose_region("FLAT", TEST_SITES[:3], values)

    assert result.k == 1
    np.testing.assert_allclose(result.scores, np.zeros((1, 6)), atol=1e-12)
    np.testing.assert_array_equal(result.percent_variance, [0.0])


@pytest.mark.parametrize("constant", [0.1, 0.7])
def test_decompose_region_single_constant_site(constant) -> None:
    """A single flat site passes through but explains no variance."""

    values = np.full((1, 6), constant)
    result = decomposition.decompose_region("FLAT", TEST_SITES[:1], values)

    assert result.degenerate
    np.testing.assert_array_equal(result.scores, values)
    np.testing.assert_array_equal(result.percent_variance, [0.0])


def test_decompose_region_non_finite() -> None:
    """Non-finite values raise RegionDecompositionError with a reason code."""

    values = TEST_VALUES.copy()
    values[2, 3] = np.inf

    with pytest.raises(decomposition.RegionDecompositionError, match="non-finite") as exc:
        decomposition.decompose_region("BAD", TEST_SITES, values)
    assert exc.value.reason == "non_finite"
    assert exc.value.region_id == "BAD"


def test_decompose_region_svd_failure(monkeypatch) -> None:
    """A failed SVD raises RegionDecompositionError with reason svd_failed."""

    def failing_svd(*args, **kwargs):
        raise np.linalg.LinAlgError("SVD did not converge")

    monkeypatch.setattr(decomposition.np.linalg, "svd", failing_svd)

    with pytest.raises(decomposition.RegionDecompositionError) as exc:
        decomposition.decompose_region("BAD", TEST_SITES, TEST_VALUES)
    assert exc.value.reason == "svd_failed"


def test_decompose_region_unknown_method() -> None:
    """Test that an unknown method raises ValueError."""
    with pytest.raises(ValueError, match="Unknown method"):
        decomposition.decompose_region("GENE1", TEST_SITES, TEST_VALUES, method="kaiser")
