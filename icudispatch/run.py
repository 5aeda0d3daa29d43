"""
ICU Dispatch Backend Runner
"""

import uvicorn
from icudispatch.core.config import Config


def main():
    """Run the ICU dispatch backend server."""
    uvicorn.run(
        "icudispatch.api.main:app",
        host=Config.HOST,
        port=Config.PORT,
        reload=Config.DEBUG,
        log_level=Config.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
