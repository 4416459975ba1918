import logging
import sys

from PySide6.QtWidgets import QApplication

from core.settings_io import load_user_settings
from ui.main_window import MainWindow


def _configure_logging(level_name: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main() -> int:
    settings = load_user_settings()
    _configure_logging(settings.log_level)

    app = QApplication(sys.argv)
    app.setApplicationName("OverlayMatte")
    app.setOrganizationName("OverlayMatte")

    w = MainWindow(settings=settings)
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
