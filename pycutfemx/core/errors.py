"""pycutfemx.core.errors"""


class TopologyError(RuntimeError):
    """Inconsistent connectivity or ownership data, possibly across ranks.

    Raised collectively: every rank of the communicator raises it together,
    the mesh under construction must be discarded.
    """


class ElementHashMismatch(RuntimeError):
    """Tabulated element does not match the element a kernel was built for."""
