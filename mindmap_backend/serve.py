"""Uvicorn launcher for the ``mindmap-backend`` console script."""

import uvicorn

from mindmap_backend.core.config import settings


def main() -> None:
    uvicorn.run(
        "mindmap_backend.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
