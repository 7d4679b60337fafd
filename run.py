import json
import os
import logging
from flask import Flask
from animehub.repo import SqliteRepo
from animehub.service import AnimeService
from animehub.notifier import LogNotifier, WebhookNotifier
from animehub.web import register_routes, register_error_handlers

DEFAULT_CFG = {
    "database": "data/anime.db",
    "debug": True,
    "host": "127.0.0.1",
    "port": 5000,
    "logging_level": "INFO",
    "admin_email": "admin@example.com",
    "notification_url": None,  # None -> notifications are only logged
    "notification_timeout": 5.0,
    "max_upload_mb": 50,
}

def load_config(path=None):
    path = path or os.environ.get("ANIMEHUB_CONFIG", "config.json")
    if not os.path.exists(path):
        print(f"{path} not found, using defaults:", DEFAULT_CFG)
        return DEFAULT_CFG.copy()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
    except (OSError, ValueError) as e:
        print(f"Failed to read {path}:", e, "(using defaults)")
        return DEFAULT_CFG.copy()
    merged = DEFAULT_CFG.copy()
    merged.update(cfg)
    return merged

cfg = load_config()

def configure_logging(level_name: str, debug: bool = False):
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # quieter werkzeug when not debugging
    logging.getLogger("werkzeug").setLevel(logging.INFO if debug else logging.WARNING)

def build_notifier(conf: dict):
    url = conf.get("notification_url")
    if url:
        return WebhookNotifier(url, timeout=float(conf.get("notification_timeout", 5.0)))
    return LogNotifier()

def create_app(overrides=None):
    conf = dict(cfg)
    conf.update(overrides or {})
    configure_logging(conf.get("logging_level", "INFO"), bool(conf.get("debug")))
    logger = logging.getLogger(__name__)
    logger.info("Starting app with config: %s", {k: v for k, v in conf.items() if k != "database"})

    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY", "dev-key")
    app.config["MAX_CONTENT_LENGTH"] = int(conf["max_upload_mb"]) * 1024 * 1024
    repo = SqliteRepo(conf["database"])
    repo.init_schema()
    service = AnimeService(repo, notifier=build_notifier(conf), admin_email=conf["admin_email"])
    app.config["SERVICE"] = service

    register_routes(app, service)
    register_error_handlers(app)
    return app

if __name__ == "__main__":
    app = create_app()
    app.run(host=cfg.get("host", "127.0.0.1"), port=cfg.get("port", 5000), debug=cfg.get("debug", True))
