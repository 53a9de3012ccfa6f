"""regionalpcs: Summarize DNA methylation by region with principal components.

regionalpcs is a Python package for reducing a sites x samples DNA methylation
matrix (beta or M values) to a much smaller matrix of regional principal
components. CpG sites are assigned to genomic regions (genes, promoters, ...)
by interval overlap, each region's sites are decomposed with an SVD, and the
number of components kept per region is chosen with random matrix theory.

Main Components:
    create_region_map: Assign sites to the regions they overlap.
    RegionMap: Ordered (region_id, site_id) assignments.
    compute_regional_pcs: Decompose every region and assemble the regional
        component matrix.

Example:
    Command-line usage::

        $ regionalpcs --matrix meth.tsv --regions promoters.bed --output pcs.tsv

    Python API usage::

        import pandas as pd
        from regionalpcs.intervals import read_bed, regions_from_frame, sites_from_ids
        from regionalpcs.region_map import create_region_map
        from regionalpcs.functions import compute_regional_pcs

        # Rows keyed as chrom_start_end_name, columns are samples
        meth = pd.read_csv("meth.tsv", sep="\\t", index_col=0)

        region_map = create_region_map(
            sites=sites_from_ids(meth.index),
            regions=regions_from_frame(read_bed("promoters.bed")),
        )

        result = compute_regional_pcs(meth, region_map, method="gd")
        result.regional_components  # rows like "GENE1-PC1", one column per sample

Rank Selection:
    - gd: Gavish-Donoho optimal hard threshold (default)
    - mp: Marcenko-Pastur bulk edge
"""

__version__ = "0.1"
