"""pycutfemx: cut-cell meshes and runtime cut quadrature on distributed meshes."""
__version__ = "0.1.0"
