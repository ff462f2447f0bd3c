"""groupcharts - weekly group music charts, trends, records and compatibility."""

__version__ = "0.1.0"
