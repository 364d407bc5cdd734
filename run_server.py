import os

import uvicorn

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    logger.info("Starting example app on port %s", port)

    uvicorn.run(
        "policy_agent.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )
