"""
Analysis pipeline and output repair.
"""

from .analyzer import ContractAnalyzer
from .schema_repair import SchemaRepairer

__all__ = ["ContractAnalyzer", "SchemaRepairer"]
