"""Tools for modding Tomba! (Ore no Tomba) PlayStation game files."""

__version__ = '0.1.0'
