"""
Root entrypoint — run with:
    uvicorn main:app --reload --port 5000
    or:  python main.py
"""

from app.main import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    from app.core.config import settings

    uvicorn.run("main:app", host="0.0.0.0", port=5000, reload=settings.DEBUG)
