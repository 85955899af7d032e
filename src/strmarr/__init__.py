"""strmarr - mirror an Xtream VOD catalog into a .strm media library."""

__version__ = "0.4.0"
