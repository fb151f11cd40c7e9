"""
Request routing between the local model and the fallback.
"""

from .router import ContractAnalysisRouter, create_analysis_router

__all__ = ["ContractAnalysisRouter", "create_analysis_router"]
