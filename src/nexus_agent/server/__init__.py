"""FastAPI server: thread API, chat streaming, webhooks and live events."""
