# kb_assistant/__main__.py
# -*- coding: utf-8 -*-
"""
Run the server in development:

    python -m kb_assistant

In production you normally use:

    uvicorn kb_assistant.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import uvicorn

from kb_assistant.core.config import settings


def main() -> None:
    uvicorn.run(
        "kb_assistant.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=(settings.environment != "production"),
    )


if __name__ == "__main__":
    main()
