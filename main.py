"""
Vital desktop entry point.

``python main.py`` loads settings, opens the profile store and the local
cache, wires the services and runs the window until it is closed.
"""

from __future__ import annotations

import atexit
import sys
import traceback

from vital.config import AppConfig, get_config
from vital.database import DatabaseManager
from vital.logger import get_logger
from vital.schema import initialize_schema
from vital.services import ServiceContainer, create_services
from vital.ui.app_shell import AppShell


def bootstrap(config: AppConfig) -> tuple[DatabaseManager, ServiceContainer]:
    """Open connections, migrate the cache and build the service graph."""
    config.validate_gate_config()

    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=config.CACHE_DB_PATH,
        logger=get_logger("database"),
    )
    atexit.register(db.close)
    initialize_schema(db.sqlite, get_logger("schema"))
    return db, create_services(db=db, config=config)


def main() -> None:
    log = get_logger("main")
    config = get_config()
    log.info("Starting Vital.")

    db, services = bootstrap(config)
    shell = AppShell(config=config, services=services, logger=get_logger("ui"))
    try:
        shell.mainloop()
    finally:
        services["session_manager"].stop()
        db.close()
        log.info("Vital stopped.")


def _report_fatal(exc: BaseException) -> None:
    """Tell a double-click user why the window never appeared.

    Plain tkinter, since CustomTkinter itself may be what failed.
    """
    summary = f"{type(exc).__name__}: {exc}"
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        import tkinter
        from tkinter import messagebox

        root = tkinter.Tk()
        root.withdraw()
        messagebox.showerror("Vital could not start", summary, detail=detail)
        root.destroy()
    except Exception:
        # No display available.
        sys.stderr.write(f"FATAL: {summary}\n{detail}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        _report_fatal(exc)
        sys.exit(1)
