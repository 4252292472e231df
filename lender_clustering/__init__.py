"""
Lender Clustering

A small pipeline that segments financial institutions by how they
processed one population's home loan applications, using per-institution
acceptance rate, mean interest rate and mean loan amount.
"""

__version__ = "0.1.0"
