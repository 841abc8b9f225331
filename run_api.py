"""
Start the Constituency Desk API (uvicorn).

Settings come from the environment / .env; see constituency_desk.config.
A failed start prints the usual suspects so the desk operator can fix
the environment without reading a traceback.
"""

import logging
import sys

from constituency_desk.main import run

STARTUP_HINTS = (
    "DATABASE_URL / DB_PATH points somewhere unreachable or unwritable",
    "PORT is already taken by another process",
    "APP_ENV=production with JWT_SECRET still at its default",
    "WORKDAY_END_HOUR is not after WORKDAY_START_HOUR",
)


def main() -> int:
    try:
        run()
    except KeyboardInterrupt:
        return 0
    except Exception:
        logging.basicConfig(level=logging.ERROR)
        logging.getLogger("run_api").exception("Constituency Desk API did not start")
        print("\nConstituency Desk API did not start. Check:", file=sys.stderr)
        for hint in STARTUP_HINTS:
            print(f"  * {hint}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
