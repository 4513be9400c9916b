import os
from flask import Flask
from dotenv import load_dotenv
from subscription_renewer.config.dev_config import DevConfig
from subscription_renewer.config.production import ProductionConfig
from subscription_renewer.controllers.renewal_controller import build_renewer
from subscription_renewer.routes.main import main_bp
from subscription_renewer.cli.commands import renew_subscriptions, list_expiring
from subscription_renewer.utils.scheduler_utils import setup_scheduler

# Load environment variables early
load_dotenv()


def register_blueprints(app):
    """Attach the status blueprint and CLI commands."""
    app.register_blueprint(main_bp)
    app.cli.add_command(renew_subscriptions)
    app.cli.add_command(list_expiring)


def default_config():
    if os.getenv("FLASK_ENV") == "production":
        return ProductionConfig
    return DevConfig


def create_app(config_object=None, renewer=None, start_scheduler=False):
    app = Flask(__name__)
    app.config.from_object(config_object or default_config())
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    if not app.config.get("NOTIFICATION_URL"):
        app.logger.warning("❗ NOTIFICATION_URL is not set; Graph will reject new subscriptions")

    app.extensions["subscription_renewer"] = renewer or build_renewer(app.config)
    register_blueprints(app)

    # CLI commands build the app too; only the long-running process schedules
    if start_scheduler and app.config.get("SCHEDULER_ENABLED", True):
        setup_scheduler(app)

    return app


if __name__ == "__main__":
    app = create_app(start_scheduler=True)
    app.logger.info("OneDrive Change Listener is running...")
    app.run(
        host=app.config["SERVER_HOST"],
        port=app.config["SERVER_PORT"],
        debug=app.config.get("DEBUG", False),
        use_reloader=False
    )
