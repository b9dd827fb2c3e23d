"""
runewallet - UTXO selection and fee estimation over external indexers
"""

__version__ = "0.3.0"
