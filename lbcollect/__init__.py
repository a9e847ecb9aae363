"""lbcollect: enumerate load-balancer backends behind an edge network."""

__version__ = "0.1.0"
