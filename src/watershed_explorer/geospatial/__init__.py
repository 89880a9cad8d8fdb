"""
Geospatial operations for the watershed workflow.

This module contains:
- Basin boundary selection and river network retrieval
- STAC operations (search, asset signing and download)
- Raster operations (mosaic, clip, reprojection, temporal reduction)
"""
