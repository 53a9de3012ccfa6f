"""Core functions for regionalpcs."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Union  # Remove when dropping Python 3.9

# Third party modules
import numpy as np
import pandas as pd

from tqdm import tqdm
from regionalpcs.decomposition import (
    RegionDecompositionError,
    RegionResult,
    decompose_region,
)
from regionalpcs.rank import validate_method
from regionalpcs.region_map import RegionMap

# Reason codes for skipped regions
NO_SITES_IN_MATRIX = "no_sites_in_matrix"


@dataclass
class RegionBlock:
    """The rows of the methylation matrix that belong to one region."""

    region_id: str
    site_ids: list[str]
    values: np.ndarray


@dataclass
class RegionalPCsResult:
    """Regional principal components for a whole methylation matrix.

    Attributes
    ----------
    regional_components : pd.DataFrame
        One row per retained component, labelled <region_id>-PC<i>, one column
        per sample.
    loadings : dict[str, pd.DataFrame]
        Per region, a sites x PCs DataFrame of loadings.
    component_counts : dict[str, int]
        Per region, the number of components kept.
    singular_values : dict[str, np.ndarray]
        Per region, the full singular value spectrum.
    percent_variance : dict[str, np.ndarray]
        Per region, percent of variance explained by each kept component.
    skipped_regions : dict[str, str]
        Region id -> reason code, for regions with no output.
    method : str
        "gd" or "mp".
    n_dropped_sites : int
        Region map sites missing from the matrix.
    """

    regional_components: pd.DataFrame
    loadings: dict[str, pd.DataFrame]
    component_counts: dict[str, int]
    singular_values: dict[str, np.ndarray]
    percent_variance: dict[str, np.ndarray]
    skipped_regions: dict[str, str]
    method: str
    n_dropped_sites: int = 0
    info: pd.DataFrame = field(default_factory=pd.DataFrame)


def validate_matrix(matrix: pd.DataFrame) -> None:
    """Check that a methylation matrix is ready for decomposition.

    Raises
    -------
    ValueError
        If ids are duplicated, values are not numeric or missing, or there are
        fewer than two samples.
    """
    if not matrix.index.is_unique:
        duplicated = matrix.index[matrix.index.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate site ids in matrix: {duplicated[:5]}")
    if not matrix.columns.is_unique:
        duplicated = matrix.columns[matrix.columns.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate sample ids in matrix: {duplicated[:5]}")
    if matrix.shape[1] < 2:
        raise ValueError(
            f"At least 2 samples are needed to compute components, got {matrix.shape[1]}"
        )

    non_numeric = [
        col for col in matrix.columns if not pd.api.types.is_numeric_dtype(matrix[col])
    ]
    if non_numeric:
        raise ValueError(f"Non-numeric sample columns in matrix: {non_numeric[:5]}")

    n_missing = int(matrix.isna().to_numpy().sum())
    if n_missing:
        raise ValueError(
            f"Matrix has {n_missing:,} missing values, impute or filter them first"
        )


def aggregate_regions(
    matrix: pd.DataFrame,
    region_map: RegionMap,
    verbose: bool = False,
) -> tuple[list[RegionBlock], dict[str, str], int]:
    """Split the methylation matrix into per-region blocks.

    Args
    ----------
    matrix : pd.DataFrame
        Sites x samples methylation values.
    region_map : RegionMap
        Region to site assignments.
    verbose : bool, optional
        Verbose output.

    Returns
    -------
    tuple:
        (blocks in region order, skipped region id -> reason,
         number of map sites missing from the matrix)
    """
    validate_matrix(matrix)

    site_ids = [str(s) for s in matrix.index]
    site_to_row = {site_id: row for row, site_id in enumerate(site_ids)}
    values = matrix.to_numpy(dtype=float)

    blocks = []
    skipped: dict[str, str] = {}
    missing_sites = set()

    for region_id in region_map.region_ids():
        region_sites = []
        rows = []
        for site_id in region_map.sites_for(region_id):
            row = site_to_row.get(site_id)
            if row is None:
                missing_sites.add(site_id)
                continue
            region_sites.append(site_id)
            rows.append(row)

        if not rows:
            skipped[region_id] = NO_SITES_IN_MATRIX
            continue

        # Fancy indexing copies, so workers never share writable memory
        blocks.append(RegionBlock(region_id, region_sites, values[rows]))

    if verbose:
        print(f"\tRegions with sites in matrix: {len(blocks):,}")
        if missing_sites:
            print(f"\tSites in region map but not in matrix (dropped): {len(missing_sites):,}")
        if skipped:
            print(f"\tRegions with no sites in matrix (skipped): {len(skipped):,}")

    return blocks, skipped, len(missing_sites)


def assemble_results(
    results: list[RegionResult],
    sample_ids: list[str],
    skipped: dict[str, str],
    method: str,
    n_dropped_sites: int = 0,
) -> RegionalPCsResult:
    """Concatenate per-region results into one RegionalPCsResult.

    Rows of the component matrix keep the order of results, and within a region
    the order of descending singular values.
    """
    labels = []
    score_rows = []
    loadings = {}
    component_counts = {}
    singular_values = {}
    variance = {}

    for result in results:
        labels.extend(result.component_labels)
        score_rows.append(result.scores)
        loadings[result.region_id] = pd.DataFrame(
            result.loadings,
            index=pd.Index(result.site_ids, name="site_id"),
            columns=[f"PC{i + 1}" for i in range(result.k)],
        )
        component_counts[result.region_id] = result.k
        singular_values[result.region_id] = result.singular_values
        variance[result.region_id] = result.percent_variance

    if score_rows:
        scores = np.vstack(score_rows)
    else:
        scores = np.empty((0, len(sample_ids)))

    regional_components = pd.DataFrame(
        scores, index=pd.Index(labels, name="component"), columns=list(sample_ids)
    )

    info = pd.DataFrame(
        {
            "number_regions": [len(results)],
            "number_pcs": [len(labels)],
            "number_skipped": [len(skipped)],
            "method": [method],
        }
    )

    return RegionalPCsResult(
        regional_components=regional_components,
        loadings=loadings,
        component_counts=component_counts,
        singular_values=singular_values,
        percent_variance=variance,
        skipped_regions=dict(skipped),
        method=method,
        n_dropped_sites=n_dropped_sites,
        info=info,
    )


def _decompose_block(
    block: RegionBlock, method: str
) -> Union[RegionResult, RegionDecompositionError]:
    try:
        return decompose_region(block.region_id, block.site_ids, block.values, method)
    except RegionDecompositionError as exc:
        return exc


def compute_regional_pcs(
    matrix: pd.DataFrame,
    region_map: Union[RegionMap, pd.DataFrame],
    method: str = "gd",
    n_jobs: int = 1,
    verbose: bool = False,
) -> RegionalPCsResult:
    """Summarize a methylation matrix into regional principal components.

    Args
    ----------
    matrix : pd.DataFrame
        Sites x samples methylation values (beta or M values), no missing values.
    region_map : RegionMap | pd.DataFrame
        Region to site assignments, or a table with region_id and site_id columns.
    method : str, optional
        "gd" (Gavish-Donoho, default) or "mp" (Marcenko-Pastur).
    n_jobs : int, optional
        Number of worker threads for per-region decomposition.
    verbose : bool, optional
        Verbose output.

    Returns
    -------
    RegionalPCsResult

    Raises
    -------
    ValueError
        If the method is unknown or the matrix fails validation.
    """
    validate_method(method)
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be at least 1, got {n_jobs}")
    if isinstance(region_map, pd.DataFrame):
        region_map = RegionMap.from_frame(region_map)

    if verbose:
        print(f"Matrix: {matrix.shape[0]:,} sites x {matrix.shape[1]:,} samples")
        print(f"Region map: {region_map.n_regions:,} regions, {len(region_map):,} pairs")
        print(f"Method: {method}")

    blocks, skipped, n_dropped_sites = aggregate_regions(
        matrix, region_map, verbose=verbose
    )

    # Regions are independent; map() keeps region order regardless of scheduling
    with ThreadPoolExecutor(max_workers=n_jobs) as executor:
        outcomes = list(
            tqdm(
                executor.map(lambda block: _decompose_block(block, method), blocks),
                total=len(blocks),
                disable=not verbose,
            )
        )

    results = []
    for outcome in outcomes:
        if isinstance(outcome, RegionDecompositionError):
            if verbose:
                tqdm.write(f"\tSkipping region: {outcome}")
            skipped[outcome.region_id] = outcome.reason
        else:
            results.append(outcome)
    skipped = {
        region_id: skipped[region_id]
        for region_id in region_map.region_ids()
        if region_id in skipped
    }

    result = assemble_results(
        results,
        sample_ids=[str(c) for c in matrix.columns],
        skipped=skipped,
        method=method,
        n_dropped_sites=n_dropped_sites,
    )

    if verbose:
        print(
            f"\nComputed {result.regional_components.shape[0]:,} components "
            f"for {len(results):,} regions ({len(skipped):,} skipped)"
        )
    return result
