import threading


def run_in_background(app, fn, *args, **kwargs):
    def _target():
        with app.app_context():
            try:
                fn(*args, **kwargs)
            except Exception:
                app.logger.exception("❌ Background task failed")
    t = threading.Thread(target=_target, daemon=True)
    t.start()
    return t
