"""Development entry point: `python main.py` serves `helpdesk.main:app` with uvicorn.

Production deployments should point their ASGI server at `helpdesk.main:app` directly.
"""
import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "helpdesk.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "0").lower() in ("1", "true", "yes"),
    )
