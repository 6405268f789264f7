"""Assembly of standard and cut forms."""
from .assembler import assemble_matrix, assemble_scalar, assemble_vector

__all__ = ["assemble_scalar", "assemble_vector", "assemble_matrix"]
