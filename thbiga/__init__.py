"""thbiga

Truncated hierarchical B-spline bases and multi-patch interface coupling
for Isogeometric Analysis.
"""

__version__ = '0.1.0'
