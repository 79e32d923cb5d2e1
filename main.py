"""Application entrypoint."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from config import JsonConfigStore, StoredCredentialProvider
from errors import AUTH_FAILED, ERROR_MESSAGES
from overlay import OverlayWindow
from recorder import SoundDeviceRecorder
from session_controller import SessionController

try:
    from PySide6.QtCore import QObject, QSize, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QLineEdit, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))  # transparent background
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"       # grey
ICON_LISTENING = "#44AA44"  # green
ICON_ERROR = "#FF8800"      # orange


class UIBridge(QObject):
    text_signal = Signal(str)
    level_signal = Signal(float)
    auth_error_signal = Signal()
    connection_lost_signal = Signal()


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.text_signal.connect(self.overlay.set_text)
        self.ui.level_signal.connect(self.overlay.set_level)
        self.ui.auth_error_signal.connect(self._on_fatal_auth_error_ui)
        self.ui.connection_lost_signal.connect(self._on_connection_lost_ui)

        self.credentials = StoredCredentialProvider(self.config_store, prompt=self._prompt_api_key)
        self.controller = SessionController(
            recorder=SoundDeviceRecorder(device_name=self.config_store.get_audio_device()),
            credentials=self.credentials,
            sink=self,
            settings=self.config_store.get_session_settings(),
        )

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Caption Layer")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        self.toggle_action = QAction("Hide Panel", menu)
        self.toggle_action.triggered.connect(self._toggle_panel)
        menu.addAction(self.toggle_action)

        self.freeze_action = QAction("Freeze Captions", menu)
        self.freeze_action.setCheckable(True)
        self.freeze_action.toggled.connect(self.controller.pause_ui_updates)
        menu.addAction(self.freeze_action)

        clear_action = QAction("Clear", menu)
        clear_action.triggered.connect(self.controller.clear)
        menu.addAction(clear_action)

        marker_action = QAction("Insert Marker", menu)
        marker_action.triggered.connect(self.controller.insert_marker)
        menu.addAction(marker_action)

        menu.addSeparator()
        self.remove_token_action = QAction("Remove Token", menu)
        self.remove_token_action.triggered.connect(self._remove_token)
        menu.addAction(self.remove_token_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        menu.aboutToShow.connect(self._refresh_menu)
        self.tray.setContextMenu(menu)

    def _refresh_menu(self) -> None:
        self.toggle_action.setText("Hide Panel" if self.overlay.isVisible() else "Show Panel")
        self.remove_token_action.setEnabled(self.credentials.get_credential() is not None)

    def _prompt_api_key(self) -> Optional[str]:
        value, ok = QInputDialog.getText(
            None,
            "Enter ElevenLabs API Key",
            "This key is saved locally for Caption Layer.",
            QLineEdit.Password,
        )
        return value if ok else None

    # ------------------------------------------------------------------
    # CaptionSink (called from worker threads -> emit signals for UI thread)
    # ------------------------------------------------------------------

    def on_display_text_changed(self, text: str) -> None:
        self.ui.text_signal.emit(text)

    def on_audio_level_changed(self, level: float) -> None:
        self.ui.level_signal.emit(level)

    def on_fatal_auth_error(self) -> None:
        self.ui.auth_error_signal.emit()

    def on_connection_lost(self) -> None:
        self.ui.connection_lost_signal.emit()

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _toggle_panel(self) -> None:
        if self.overlay.isVisible():
            self.overlay.hide()
            self.controller.stop()
            self.tray.setIcon(_create_icon(ICON_IDLE))
        else:
            self.overlay.show()
            self._start_listening()

    def _start_listening(self) -> None:
        self.controller.start()
        if self.controller.is_running:
            self.tray.setIcon(_create_icon(ICON_LISTENING))

    def _remove_token(self) -> None:
        self.controller.stop()
        self.credentials.invalidate()
        QMessageBox.information(
            None,
            "Token Removed",
            "Caption Layer will now quit. Please reopen it to continue.",
        )
        self.quit()

    def _on_fatal_auth_error_ui(self) -> None:
        self.tray.setIcon(_create_icon(ICON_ERROR))
        self.overlay.show_error(ERROR_MESSAGES[AUTH_FAILED])
        QMessageBox.warning(
            None,
            ERROR_MESSAGES[AUTH_FAILED],
            "Caption Layer will now quit. Please check your ElevenLabs API key.",
        )
        self.quit()

    def _on_connection_lost_ui(self) -> None:
        self.tray.setIcon(_create_icon(ICON_ERROR))
        self.tray.setToolTip("Caption Layer - Connection lost")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.overlay.show()
        self._start_listening()
        return self.app.exec()

    def quit(self) -> None:
        self.controller.stop()
        self.app.quit()


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
