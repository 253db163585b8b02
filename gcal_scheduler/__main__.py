"""
Run the API server: python -m gcal_scheduler
"""

import uvicorn

from gcal_scheduler.config import configure_logging, get_settings


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run("gcal_scheduler.web.api:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
