"""Overlay window for the running caption."""

from __future__ import annotations

from transcript import MARKER_TOKEN

try:
    from PySide6.QtCore import Qt
    from PySide6.QtWidgets import QApplication, QLabel, QProgressBar, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QProgressBar = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

MARKER_GLYPH = "•"
DISPLAY_CHAR_LIMIT = 220

_TEXT_STYLE = (
    "color: {color}; font-size: 16px; padding: 12px;"
    "background: rgba(0,0,0,{alpha}); border-radius: 12px;"
)


def render_caption(text: str, limit: int = DISPLAY_CHAR_LIMIT) -> str:
    """Swap marker tokens for a glyph and keep the tail that fits the panel."""
    rendered = text.replace(MARKER_TOKEN, MARKER_GLYPH)
    if len(rendered) > limit:
        rendered = rendered[len(rendered) - limit:]
    return rendered


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(460)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._label.setAlignment(Qt.AlignCenter)
        self._label.setStyleSheet(_TEXT_STYLE.format(color="white", alpha=190))

        self._level = QProgressBar()
        self._level.setRange(0, 100)
        self._level.setTextVisible(False)
        self._level.setFixedHeight(3)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        layout.addWidget(self._level)
        self.setLayout(layout)

    def _center_top(self) -> None:
        """Position the window at the top center of the primary screen."""
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        self.move(x, geom.y())

    def set_text(self, text: str) -> None:
        """Update caption text and keep the panel at screen top center."""
        self._label.setStyleSheet(_TEXT_STYLE.format(color="white", alpha=190))
        self._label.setText(render_caption(text))
        self._center_top()

    def set_level(self, level: float) -> None:
        self._level.setValue(int(round(level * 100)))

    def show_error(self, text: str) -> None:
        self._label.setStyleSheet(_TEXT_STYLE.format(color="#FF6B6B", alpha=210))
        self._label.setText(text)
        self._level.setValue(0)
        self._center_top()
        self.show()
