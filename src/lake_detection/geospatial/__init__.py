"""
Geospatial operations for lake detection.

This module contains:
- Raster operations (COG reading, regridding, normalized differences)
- Masking (reflectance scaling, cloud and surface masks, lake classification)
- Vector operations (labelling and polygonizing the lake mask)
- Exports (GeoTIFF encoding of the lake mask and RGB preview)
- STAC operations (search, scene and band selection)
"""
