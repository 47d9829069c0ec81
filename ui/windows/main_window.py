from __future__ import annotations

import os
from typing import Optional

from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QKeySequence, QShortcut
from PySide6.QtWidgets import QFileDialog, QLabel, QMainWindow, QVBoxLayout, QWidget

from engine.audio_service import AudioServiceConfig, start_audio_service_process
from gui.engine_adapter import EngineAdapter
from ui.widgets.PlayControls import PlayControls

_AUDIO_FILTER = "Audio files (*.mp3 *.wav *.flac *.ogg *.m4a *.aac *.aif *.aiff *.opus);;All files (*)"


class MainWindow(QMainWindow):
    def __init__(self, *, service_config: Optional[AudioServiceConfig] = None) -> None:
        super().__init__()
        self.setWindowTitle("Music Player")

        config = service_config or AudioServiceConfig(parent_pid=os.getpid())
        self._audio_service, self._audio_cmd_q, self._audio_evt_q = start_audio_service_process(config)
        self.engine_adapter = EngineAdapter(
            cmd_q=self._audio_cmd_q,
            evt_q=self._audio_evt_q,
            parent=self,
        )

        central = QWidget(self)
        layout = QVBoxLayout(central)
        self.track_label = QLabel("No track loaded")
        self.status_label = QLabel("")
        self.play_controls = PlayControls(50, 400)
        layout.addWidget(self.track_label)
        layout.addWidget(self.play_controls)
        layout.addWidget(self.status_label)
        self.setCentralWidget(central)

        file_menu = self.menuBar().addMenu("File")
        open_action = QAction("Open...", self)
        open_action.setShortcut(QKeySequence.StandardKey.Open)
        open_action.triggered.connect(self.open_file)
        file_menu.addAction(open_action)

        # Controls -> adapter
        pc = self.play_controls
        pc.transport_play.connect(self.engine_adapter.toggle_play)
        pc.transport_pause.connect(self.engine_adapter.pause)
        pc.transport_stop.connect(self.engine_adapter.stop)
        pc.transport_step_forward.connect(self.engine_adapter.step_forward)
        pc.transport_step_backward.connect(self.engine_adapter.step_backward)
        pc.seek_requested.connect(self.engine_adapter.seek)

        # Adapter -> controls
        self.engine_adapter.transport_state_changed.connect(self._on_state_changed)
        self.engine_adapter.position_changed.connect(pc.set_position)
        self.engine_adapter.command_failed.connect(self._on_command_failed)
        self.engine_adapter.playback_fault.connect(self._on_playback_fault)

        self._qshortcuts = [
            QShortcut(QKeySequence(Qt.Key.Key_Space), self, activated=self._toggle_pause),
            QShortcut(QKeySequence(Qt.Key.Key_Right), self, activated=self.engine_adapter.step_forward),
            QShortcut(QKeySequence(Qt.Key.Key_Left), self, activated=self.engine_adapter.step_backward),
        ]
        pc.set_state("stopped")

    def open_file(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Open audio file", "", _AUDIO_FILTER)
        if path:
            self.engine_adapter.play(path)

    def _toggle_pause(self) -> None:
        if self.engine_adapter.transport_state == "playing":
            self.engine_adapter.pause()
        else:
            self.engine_adapter.toggle_play()

    def _on_state_changed(self, state: str, locator, position: float, total) -> None:
        self.play_controls.set_state(state, locator, position, total)
        self.track_label.setText(os.path.basename(locator) if locator else "No track loaded")
        self.status_label.setText(state)

    def _on_command_failed(self, command: str, error: str, message: str) -> None:
        self.status_label.setText(f"{command}: {error} {message}".strip())

    def _on_playback_fault(self, locator: str, error: str) -> None:
        self.status_label.setText(f"playback stopped: {error}")

    def closeEvent(self, event):
        """Clean shutdown of audio service when window closes."""
        self.engine_adapter.shutdown()
        self._audio_service.join(timeout=2.0)
        if self._audio_service.is_alive():
            self._audio_service.terminate()
            self._audio_service.join(timeout=1.0)
        event.accept()
