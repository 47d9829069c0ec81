from typing import Optional

from PySide6 import QtWidgets
from PySide6.QtCore import QSize, Qt, Signal
from PySide6.QtGui import QFont
from PySide6.QtWidgets import QHBoxLayout, QLabel, QPushButton, QSlider, QSpacerItem, QVBoxLayout, QWidget

# Slider works in milliseconds so short tracks still get a usable range.
_SLIDER_SCALE = 1000


def format_time(seconds: Optional[float]) -> str:
    if seconds is None:
        return "--:--"
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class PlayControls(QWidget):
    transport_play = Signal()
    transport_pause = Signal()
    transport_stop = Signal()
    transport_step_forward = Signal()
    transport_step_backward = Signal()
    seek_requested = Signal(float)  # seconds

    def __init__(self, height=50, width=400, *args, **kwargs):
        super().__init__(*args, **kwargs)

        self.setSizePolicy(
            QtWidgets.QSizePolicy.Policy.Fixed,
            QtWidgets.QSizePolicy.Policy.Fixed
        )

        self.layout = QVBoxLayout()
        self.setLayout(self.layout)
        self.button_row = QHBoxLayout()
        self.slider_row = QHBoxLayout()
        self.spacer = QSpacerItem(10, 50, QtWidgets.QSizePolicy.Policy.Fixed)

        self.font = QFont('Arial', 18, QFont.Weight.Bold)
        self.step_backward_button = QPushButton('<<')
        self.pause_button = QPushButton('||')
        self.play_button = QPushButton('>')
        self.step_forward_button = QPushButton('>>')
        self.stop_button = QPushButton('STOP')

        self.button_size = QSize(120, 85)
        for button in (
            self.step_backward_button,
            self.pause_button,
            self.play_button,
            self.step_forward_button,
            self.stop_button,
        ):
            button.setFont(self.font)
            button.setFixedSize(self.button_size)
            self.button_row.addWidget(button)
            self.button_row.addSpacerItem(self.spacer)

        self.elapsed_label = QLabel(format_time(0))
        self.total_label = QLabel(format_time(None))
        self.position_slider = QSlider(Qt.Orientation.Horizontal)
        self.position_slider.setRange(0, 0)
        self.position_slider.setEnabled(False)
        self.slider_row.addWidget(self.elapsed_label)
        self.slider_row.addWidget(self.position_slider)
        self.slider_row.addWidget(self.total_label)

        self.layout.addLayout(self.button_row)
        self.layout.addLayout(self.slider_row)

        self._dragging = False

        # Transport wiring (emit signals; the main window routes to EngineAdapter)
        self.play_button.clicked.connect(self.transport_play.emit)
        self.pause_button.clicked.connect(self.transport_pause.emit)
        self.stop_button.clicked.connect(self.transport_stop.emit)
        self.step_forward_button.clicked.connect(self.transport_step_forward.emit)
        self.step_backward_button.clicked.connect(self.transport_step_backward.emit)

        self.position_slider.sliderPressed.connect(self._on_slider_pressed)
        self.position_slider.sliderReleased.connect(self._on_slider_released)

    # ---------- slots driven by EngineAdapter ----------

    def set_position(self, position: float, remaining=None, total=None) -> None:
        if total is not None:
            self.position_slider.setRange(0, int(float(total) * _SLIDER_SCALE))
            self.total_label.setText(format_time(total))
        if not self._dragging:
            self.position_slider.setValue(int(float(position) * _SLIDER_SCALE))
        self.elapsed_label.setText(format_time(position))

    def set_state(self, state: str, locator=None, position: float = 0.0, total=None) -> None:
        active = state != "stopped"
        # Seeking needs a known length to map the slider range.
        self.position_slider.setEnabled(active and total is not None)
        self.pause_button.setEnabled(state == "playing")
        self.play_button.setEnabled(state == "paused")
        self.step_forward_button.setEnabled(active)
        self.step_backward_button.setEnabled(active)
        if not active:
            self.position_slider.setRange(0, 0)
            self.total_label.setText(format_time(None))
        self.set_position(position, None, total)

    # ---------- slider ----------

    def _on_slider_pressed(self) -> None:
        self._dragging = True

    def _on_slider_released(self) -> None:
        self._dragging = False
        self.seek_requested.emit(self.position_slider.value() / float(_SLIDER_SCALE))


if __name__=='__main__':
    app = QtWidgets.QApplication([])
    play_controls = PlayControls(50, 400)
    play_controls.show()
    app.exec()
