from __future__ import annotations


def main() -> int:
    import sys
    import traceback
    from pathlib import Path

    import multiprocessing as mp
    # Set spawn method BEFORE anything creates a subprocess
    mp.set_start_method("spawn", force=True)

    from PySide6.QtWidgets import QApplication
    from ui.windows.main_window import MainWindow

    # Write a traceback to disk on startup failure so it isn't silent.
    crash_path = Path("last_gui_crash.txt")

    try:
        app = QApplication(sys.argv[:1])
        w = MainWindow()
        w.resize(900, 300)
        w.show()

        # Optional: play a locator passed on the command line.
        if len(sys.argv) > 1:
            w.engine_adapter.play(sys.argv[1])

        return app.exec()
    except Exception:
        try:
            crash_path.write_text(traceback.format_exc(), encoding="utf-8")
        except OSError:
            pass
        print("\n[GUI CRASH] See last_gui_crash.txt\n", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
