from __future__ import annotations

import uvicorn

from sectorscope.api import create_api_app
from sectorscope.core.config import settings


app = create_api_app()


if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_config=None,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )
