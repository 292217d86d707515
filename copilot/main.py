"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from copilot import __version__
from copilot.api.endpoints import router
from copilot.utils.logging import setup_logging

setup_logging()

# Create FastAPI application
app = FastAPI(
    title="Nova Copilot",
    description=(
        "An agentic copilot for customer support agents that streams its reasoning "
        "and tool activity as server-sent events."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Copilot",
            "description": (
                "Send an operator message and receive text, tool activity and completion "
                "events as a text/event-stream."
            ),
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("copilot.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
