# run.py
from gunicorn.app.base import BaseApplication

from harvester.main import create_app


class HarvesterApplication(BaseApplication):
    def __init__(self, app, options=None):
        self.options = options or {}
        self.application = app
        super().__init__()

    def load_config(self):
        for key, value in self.options.items():
            if key in self.cfg.settings and value is not None:
                self.cfg.set(key.lower(), value)

    def load(self):
        return self.application


def main():
    options = {
        "bind": "0.0.0.0:8000",
        # Each worker would run its own poller and Telegram session
        "workers": 1,
        "worker_class": "uvicorn.workers.UvicornWorker",
        "proc_name": "telegram_harvester",
    }
    HarvesterApplication(create_app(), options).run()


if __name__ == "__main__":
    main()
