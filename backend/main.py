"""
ClearClause Contract Analyzer - server entry point.
"""

import uvicorn

from clearclause.models.config import settings

# Main entry point
if __name__ == "__main__":
    uvicorn.run(
        "clearclause.api.app:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
