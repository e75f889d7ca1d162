"""Run the HTTP server. Usage: bonusmart [-a host:port] [-d dsn] [-r accrual_url] [-debug | -l N]"""

from typing import Sequence

import uvicorn

from bonusmart.core.config import settings_from_args
from bonusmart.core.logging import configure_logging, get_logger
from bonusmart.main import create_app


def main(argv: Sequence[str] | None = None) -> None:
    settings = settings_from_args(argv)
    configure_logging(debug=settings.debug, level=settings.log_level_name)
    log = get_logger(__name__)
    log.info(
        "config",
        run_address=settings.run_address,
        accrual_system_address=settings.accrual_system_address,
        log_level=settings.log_level_name,
    )
    app = create_app(settings)
    uvicorn.run(app, host=settings.bind_host, port=settings.bind_port, access_log=False)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
