"""
tilestream: level-of-detail streaming of 3D Tiles datasets.

The entry point is `tilestream.runtime.session.TilesetSession`; configuration
comes from `tilestream.config.load_tileset_config`.
"""

__version__ = "0.1.0"
