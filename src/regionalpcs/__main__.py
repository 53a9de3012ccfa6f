# Import modules
import click
import os
import time

# Third party modules
import pandas as pd

from regionalpcs.functions import RegionalPCsResult, compute_regional_pcs
from regionalpcs.intervals import read_bed, regions_from_frame, sites_from_frame, sites_from_ids
from regionalpcs.rank import METHODS
from regionalpcs.region_map import RegionMap, create_region_map, load_region_map


def get_output_paths(output_file: str) -> dict[str, str]:
    """Return the component, loadings and counts paths for an output file.

    e.g. pcs.tsv -> pcs.tsv, pcs.loadings.tsv, pcs.counts.tsv
    """
    stem = os.path.splitext(output_file)[0]
    return {
        "components": output_file,
        "loadings": stem + ".loadings.tsv",
        "counts": stem + ".counts.tsv",
    }


def validate_output(output_file: str, overwrite: bool) -> None:
    """Validate that the output files can be written.

    Raises
    ----------
    ValueError: If an output file exists and overwrite is not set, or the
        output directory is not writable.
    """
    for path in get_output_paths(output_file).values():
        if os.path.exists(path):
            if overwrite and os.access(path, os.W_OK):
                print(f"\tOutput file exists and --overwrite specified. Will overwrite: {path}")
            else:
                raise ValueError(
                    f"Output file exists and --overwrite not specified or not writable: {path}"
                )
        elif not os.access(os.path.dirname(os.path.abspath(path)), os.W_OK):
            raise ValueError(f"Output file path is not writable: {path}")


def load_matrix(matrix_file: str) -> pd.DataFrame:
    """Load a methylation matrix (first column = site ids) from a .tsv or .csv."""
    sep = "," if matrix_file.endswith((".csv", ".csv.gz")) else "\t"
    matrix = pd.read_csv(matrix_file, sep=sep, index_col=0)
    matrix.index = matrix.index.astype(str)
    return matrix


def write_results(result: RegionalPCsResult, output_file: str) -> None:
    """Write components, long-form loadings and per-region counts."""
    paths = get_output_paths(output_file)

    result.regional_components.to_csv(paths["components"], sep="\t")

    loadings = [
        df.reset_index().melt(id_vars="site_id", var_name="PC", value_name="loading")
        .assign(region_id=region_id)
        for region_id, df in result.loadings.items()
    ]
    if loadings:
        long_loadings = pd.concat(loadings, ignore_index=True)
    else:
        long_loadings = pd.DataFrame(columns=["region_id", "site_id", "PC", "loading"])
    long_loadings[["region_id", "site_id", "PC", "loading"]].to_csv(
        paths["loadings"], sep="\t", index=False
    )

    pd.DataFrame(
        list(result.component_counts.items()), columns=["region_id", "n_components"]
    ).to_csv(paths["counts"], sep="\t", index=False)


@click.command(
    help="Summarize a sites x samples methylation matrix into regional principal components."
)
@click.version_option()
@click.option(
    "--matrix",
    "matrix_file",
    help="Methylation matrix (.tsv or .csv), sites as rows keyed chrom_start_end_name, samples as columns.",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "--region-map",
    help="Tab-separated table with region_id and site_id columns.",
    required=False,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "--regions",
    help="Region .bed file (chrom, start, end, name[, score, strand]). Sites are mapped by overlap.",
    required=False,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "--sites",
    help="Site .bed file (chrom, start, end, site_id[, score, strand]) used with --regions. "
    "Default = positions parsed from the matrix site ids (unstranded).",
    required=False,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "--strand-aware",
    help="Only map sites to regions on the same strand. Needs stranded sites from --sites.",
    is_flag=True,
)
@click.option(
    "--method",
    help="Rank selection method: gd (Gavish-Donoho) or mp (Marcenko-Pastur). Default = gd",
    default="gd",
    type=click.Choice(METHODS),
)
@click.option(
    "--n-jobs", help="Worker threads for per-region decomposition (default = 1)", default=1, type=int
)
@click.option(
    "--output",
    "output_file",
    help="Output .tsv for the regional components.",
    required=True,
    type=click.Path(dir_okay=False),
)
@click.option("--verbose", help="Verbose output.", is_flag=True)
@click.option("--overwrite", help="Overwrite output files if they exist.", is_flag=True)
def main(
    matrix_file: str,
    region_map: str,
    regions: str,
    sites: str,
    strand_aware: bool,
    method: str,
    n_jobs: int,
    output_file: str,
    verbose: bool,
    overwrite: bool,
) -> None:
    """Regional PCs."""
    time_start = time.time()

    if (region_map is None) == (regions is None):
        raise click.UsageError("Provide exactly one of --region-map or --regions.")
    if sites is not None and regions is None:
        raise click.UsageError("--sites can only be used with --regions.")

    print(f"Methylation matrix: {matrix_file}")
    print(f"Method: {method}")
    print(f"Output: {output_file}")

    try:
        validate_output(output_file, overwrite)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    #################################################
    # Load the matrix and the region assignments
    #################################################

    matrix = load_matrix(matrix_file)
    print(f"\nLoaded {matrix.shape[0]:,} sites x {matrix.shape[1]:,} samples")

    try:
        if region_map is not None:
            print(f"Region map: {region_map}")
            sites_to_regions: RegionMap = load_region_map(region_map)
        else:
            print(f"Regions: {regions}")
            if sites is not None:
                print(f"Sites: {sites}")
                site_list = sites_from_frame(read_bed(sites))
            else:
                if strand_aware:
                    print("\tSites parsed from matrix ids are unstranded and match either strand")
                site_list = sites_from_ids(matrix.index)
            sites_to_regions = create_region_map(
                sites=site_list,
                regions=regions_from_frame(read_bed(regions)),
                strand_aware=strand_aware,
                verbose=verbose,
            )
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    print(f"\t{sites_to_regions.n_regions:,} regions, {len(sites_to_regions):,} site assignments")
    print(f"\nTime elapsed: {time.time() - time_start:.2f} seconds")

    #################################################
    # Decompose every region
    #################################################

    try:
        result = compute_regional_pcs(
            matrix, sites_to_regions, method=method, n_jobs=n_jobs, verbose=verbose
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    print(f"\nWriting regional components to: {output_file}")
    write_results(result, output_file)

    print(
        f"\n{int(result.info['number_pcs'][0]):,} components from "
        f"{int(result.info['number_regions'][0]):,} regions"
    )
    if result.n_dropped_sites:
        print(f"{result.n_dropped_sites:,} mapped sites were not in the matrix")

    if result.skipped_regions:
        print(f"\n{len(result.skipped_regions)} regions skipped:")
        for region_id, reason in result.skipped_regions.items():
            print(f"\t{region_id}: {reason}")

    print(f"\nTotal time elapsed: {time.time() - time_start:.2f} seconds")
    print("\nRun complete.")


if __name__ == "__main__":
    main(prog_name="regionalpcs")  # pylint: disable=no-value-for-parameter
