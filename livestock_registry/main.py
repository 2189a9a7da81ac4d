import uvicorn

from .config import LOG_LEVEL, PORT


def main() -> None:
    uvicorn.run("livestock_registry.app:app", host="0.0.0.0", port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()

# Run with: python -m livestock_registry.main  (or uvicorn livestock_registry.app:app --port 8000)
