"""tabula - runtime-defined tables on top of an embedded document store."""

__version__ = "0.1.0"
