"""
Energy data gateway - cached, coalesced access to the EnergiDataService API.
"""

__version__ = "0.1.0"
