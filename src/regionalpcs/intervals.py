"""Genomic intervals for CpG sites and regions, and the overlap search between them."""

import heapq
from dataclasses import dataclass
from typing import Optional, Sequence
from typing import Union  # Remove when dropping Python 3.9

# Third party modules
import pandas as pd

BED_COLUMNS = ["chrom", "start", "end", "name", "score", "strand"]

# Strands that match any other strand in strand-aware mode
UNSTRANDED = (None, "*", ".")


@dataclass(frozen=True)
class Site:
    """A single measured CpG site.

    Coordinates are 0-based and half-open, as in .bed files. A site with
    start == end is a single base at `start`.
    """

    site_id: str
    chrom: str
    start: int
    end: int
    strand: Optional[str] = None


@dataclass(frozen=True)
class Region:
    """A genomic region (gene, promoter, ...) that sites are summarized over."""

    region_id: str
    chrom: str
    start: int
    end: int
    strand: Optional[str] = None


Interval = Union[Site, Region]


def parse_site_id(key: str, sep: str = "_") -> Site:
    """Parse a composite matrix row key into a Site.

    Keys look like chrom_start_end_name, e.g. "chr1_10468_10470_cg00000957".
    The chromosome and the name may themselves contain the separator
    (e.g. "chrUn_gl000220_105_107_cg1"), so the first two consecutive integer
    tokens are taken as start and end.

    Args
    ----------
    key : str
        The composite site key.
    sep : str, optional
        The separator between fields.

    Returns
    -------
    Site
        A Site whose site_id is the full key.

    Raises
    -------
    ValueError
        If no chromosome, start and end can be found in the key.
    """
    tokens = key.split(sep)
    for i in range(1, len(tokens) - 1):
        if tokens[i].isdigit() and tokens[i + 1].isdigit():
            return Site(
                site_id=key,
                chrom=sep.join(tokens[:i]),
                start=int(tokens[i]),
                end=int(tokens[i + 1]),
            )
    raise ValueError(
        f"Cannot parse site key {key!r}: expected chrom{sep}start{sep}end{sep}name"
    )


def sites_from_ids(site_ids: Sequence[str], sep: str = "_") -> list[Site]:
    """Parse every row key of a methylation matrix into Sites."""
    return [parse_site_id(str(site_id), sep=sep) for site_id in site_ids]


def _strand_column(df: pd.DataFrame, strand_col: Optional[str]) -> list:
    if strand_col is None or strand_col not in df.columns:
        return [None] * len(df)
    return [None if pd.isna(s) else str(s) for s in df[strand_col]]


def sites_from_frame(
    df: pd.DataFrame,
    id_col: str = "name",
    chrom_col: str = "chrom",
    start_col: str = "start",
    end_col: str = "end",
    strand_col: Optional[str] = "strand",
) -> list[Site]:
    """Build Sites from a position table (one row per site)."""
    strands = _strand_column(df, strand_col)
    return [
        Site(str(site_id), str(chrom), int(start), int(end), strand)
        for site_id, chrom, start, end, strand in zip(
            df[id_col], df[chrom_col], df[start_col], df[end_col], strands
        )
    ]


def regions_from_frame(
    df: pd.DataFrame,
    id_col: str = "name",
    chrom_col: str = "chrom",
    start_col: str = "start",
    end_col: str = "end",
    strand_col: Optional[str] = "strand",
) -> list[Region]:
    """Build Regions from a position table (one row per region interval)."""
    strands = _strand_column(df, strand_col)
    return [
        Region(str(region_id), str(chrom), int(start), int(end), strand)
        for region_id, chrom, start, end, strand in zip(
            df[id_col], df[chrom_col], df[start_col], df[end_col], strands
        )
    ]


def read_bed(bed_path: str) -> pd.DataFrame:
    """Read a BED-like table (chrom, start, end, name[, score, strand]).

    Lines starting with "#" are skipped.

    Raises
    -------
    FileNotFoundError
        If the file cannot be read.
    ValueError
        If the file has fewer than four columns.
    """
    try:
        df = pd.read_csv(bed_path, sep="\t", header=None, comment="#")
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Cannot read bed file: {bed_path}") from exc

    if df.shape[1] < 4:
        raise ValueError(
            f"Bed file needs at least 4 columns (chrom, start, end, name): {bed_path}"
        )
    df = df.iloc[:, : len(BED_COLUMNS)]
    df.columns = BED_COLUMNS[: df.shape[1]]
    return df.astype({"chrom": str, "start": int, "end": int, "name": str})


def _effective_end(interval: Interval) -> int:
    # A zero-length interval covers the single base at its start
    return max(interval.end, interval.start + 1)


def _strands_compatible(a: Optional[str], b: Optional[str]) -> bool:
    return a in UNSTRANDED or b in UNSTRANDED or a == b


def _valid_indices(intervals: Sequence[Interval], label: str, verbose: bool) -> list[int]:
    """Return the indices of well-formed intervals.

    Raises
    -------
    ValueError
        If the collection is non-empty and every interval is malformed.
    """
    valid = [
        i
        for i, interval in enumerate(intervals)
        if 0 <= interval.start <= interval.end
    ]
    n_malformed = len(intervals) - len(valid)
    if n_malformed:
        if not valid:
            raise ValueError(
                f"All {n_malformed:,} {label} intervals are malformed (start > end)"
            )
        if verbose:
            print(f"\tIgnoring {n_malformed:,} malformed {label} intervals (start > end)")
    return valid


def find_overlaps(
    sites: Sequence[Interval],
    regions: Sequence[Interval],
    strand_aware: bool = False,
    verbose: bool = False,
) -> list[tuple[int, int]]:
    """Find every (site, region) pair whose intervals intersect.

    Both collections are sorted by (chromosome, start) and swept once per
    chromosome. Open regions sit in a heap keyed on their end, so expired
    regions leave the window in O(log m) each instead of a rescan per site.

    Args
    ----------
    sites : Sequence[Site]
        Query intervals.
    regions : Sequence[Region]
        Subject intervals.
    strand_aware : bool, optional
        Require compatible strands. Unstranded intervals match either strand.
    verbose : bool, optional
        Verbose output.

    Returns
    -------
    list[tuple[int, int]]
        (site index, region index) pairs, ordered by site index then region index.

    Raises
    -------
    ValueError
        If every interval of a non-empty input is malformed.
    """
    site_indices = _valid_indices(sites, "site", verbose)
    region_indices = _valid_indices(regions, "region", verbose)

    # Group by chromosome, then sort by (start, input order)
    sites_by_chrom: dict[str, list[int]] = {}
    for i in site_indices:
        sites_by_chrom.setdefault(sites[i].chrom, []).append(i)
    regions_by_chrom: dict[str, list[int]] = {}
    for j in region_indices:
        regions_by_chrom.setdefault(regions[j].chrom, []).append(j)

    hits = []
    for chrom in sorted(sites_by_chrom.keys() & regions_by_chrom.keys()):
        chrom_sites = sorted(sites_by_chrom[chrom], key=lambda i: (sites[i].start, i))
        chrom_regions = sorted(
            regions_by_chrom[chrom], key=lambda j: (regions[j].start, j)
        )

        # Open regions as (effective end, region index), smallest end first
        active: list[tuple[int, int]] = []
        next_region = 0
        for i in chrom_sites:
            site = sites[i]
            site_end = _effective_end(site)

            # Open every region starting before this site ends
            while (
                next_region < len(chrom_regions)
                and regions[chrom_regions[next_region]].start < site_end
            ):
                j = chrom_regions[next_region]
                heapq.heappush(active, (_effective_end(regions[j]), j))
                next_region += 1

            # Sites arrive in start order, so regions ending here are done for good
            while active and active[0][0] <= site.start:
                heapq.heappop(active)

            # Everything left ends after site.start, but a region opened by an
            # earlier long site may still start after this one ends
            for _, j in active:
                if regions[j].start >= site_end:
                    continue
                if strand_aware and not _strands_compatible(
                    site.strand, regions[j].strand
                ):
                    continue
                hits.append((i, j))

    hits.sort()
    return hits
