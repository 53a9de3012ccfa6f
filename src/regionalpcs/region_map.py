"""Site to region assignments."""

from typing import Iterator, Optional, Sequence

# Third party modules
import pandas as pd

from regionalpcs.intervals import Region, Site, find_overlaps


class RegionMap:
    """An ordered, read-only list of (region_id, site_id) pairs.

    A site may belong to several regions (e.g. overlapping promoters) and every
    such pair is kept. Regions are ordered by first appearance, which fixes the
    row order of the final regional PC matrix.
    """

    def __init__(self, pairs: Sequence[tuple[str, str]]):
        """Initialize the region map.

        Args
        ----------
        pairs : Sequence[tuple[str, str]]
            (region_id, site_id) pairs. Repeated pairs are kept once.
        """
        seen = set()
        unique_pairs = []
        for region_id, site_id in pairs:
            pair = (str(region_id), str(site_id))
            if pair not in seen:
                seen.add(pair)
                unique_pairs.append(pair)
        self._pairs: tuple[tuple[str, str], ...] = tuple(unique_pairs)

        # region -> [sites], insertion ordered
        self._region_to_sites: dict[str, list[str]] = {}
        for region_id, site_id in self._pairs:
            self._region_to_sites.setdefault(region_id, []).append(site_id)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        region_col: str = "region_id",
        site_col: str = "site_id",
    ) -> "RegionMap":
        """Build a RegionMap from a two-column table.

        Raises
        -------
        ValueError
            If a column is missing or holds empty ids.
        """
        for col in (region_col, site_col):
            if col not in df.columns:
                raise ValueError(f"Region map is missing column: {col}")
        if df[[region_col, site_col]].isna().any().any():
            raise ValueError("Region map contains empty region or site ids")
        return cls(list(zip(df[region_col], df[site_col])))

    def to_frame(self) -> pd.DataFrame:
        """Return the map as a (region_id, site_id) DataFrame."""
        return pd.DataFrame(list(self._pairs), columns=["region_id", "site_id"])

    def region_ids(self) -> list[str]:
        """Region ids in first-seen order."""
        return list(self._region_to_sites)

    def sites_for(self, region_id: str) -> list[str]:
        """Site ids assigned to a region, in map order."""
        return list(self._region_to_sites.get(region_id, []))

    @property
    def n_regions(self) -> int:
        return len(self._region_to_sites)

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self._pairs)

    def __repr__(self) -> str:
        return f"RegionMap(regions={self.n_regions:,}, pairs={len(self):,})"


def _check_site_collisions(sites: Sequence[Site]) -> None:
    """Raise if one site id is used for more than one site record."""
    positions: dict[str, tuple] = {}
    collisions = []
    for site in sites:
        coordinate = (site.chrom, site.start, site.end, site.strand)
        if site.site_id in positions:
            collisions.append(
                f"{site.site_id} ({positions[site.site_id]} and {coordinate})"
            )
        else:
            positions[site.site_id] = coordinate

    if collisions:
        raise ValueError(
            f"{len(collisions)} site id collision(s), ids must be unique: "
            + ", ".join(collisions[:5])
        )


def build_region_map(
    sites: Sequence[Site],
    regions: Sequence[Region],
    overlaps: Sequence[tuple[int, int]],
) -> RegionMap:
    """Turn (site index, region index) overlap pairs into a RegionMap.

    Args
    ----------
    sites : Sequence[Site]
        The sites the overlap pairs index into.
    regions : Sequence[Region]
        The regions the overlap pairs index into.
    overlaps : Sequence[tuple[int, int]]
        Output of find_overlaps().

    Returns
    -------
    RegionMap
        Pairs in overlap order.

    Raises
    -------
    ValueError
        If a site id is reused for more than one site.
    """
    _check_site_collisions(sites)
    return RegionMap(
        [(regions[j].region_id, sites[i].site_id) for i, j in overlaps]
    )


def create_region_map(
    sites: Sequence[Site],
    regions: Sequence[Region],
    strand_aware: bool = False,
    verbose: bool = False,
) -> RegionMap:
    """Assign sites to the regions they overlap.

    Args
    ----------
    sites : Sequence[Site]
        CpG sites, e.g. from sites_from_ids(matrix.index).
    regions : Sequence[Region]
        Regions on the same genome build as the sites.
    strand_aware : bool, optional
        Only pair sites and regions on compatible strands.
    verbose : bool, optional
        Verbose output.

    Returns
    -------
    RegionMap
    """
    overlaps = find_overlaps(sites, regions, strand_aware=strand_aware, verbose=verbose)
    region_map = build_region_map(sites, regions, overlaps)

    if verbose:
        n_mapped_sites = len({site_id for _, site_id in region_map})
        print(
            f"\tMapped {n_mapped_sites:,} of {len(sites):,} sites "
            f"to {region_map.n_regions:,} of {len({r.region_id for r in regions}):,} regions"
        )
    return region_map


def load_region_map(map_path: str, sep: Optional[str] = "\t") -> RegionMap:
    """Read a region map table with region_id and site_id columns.

    Raises
    -------
    FileNotFoundError
        If the file cannot be read.
    """
    try:
        df = pd.read_csv(map_path, sep=sep, dtype=str)
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Cannot read region map: {map_path}") from exc
    return RegionMap.from_frame(df)
