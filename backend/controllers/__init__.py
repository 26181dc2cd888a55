from .activity_controller import activity_bp
from .admin_controller import admin_bp
from .setup_controller import setup_bp
from .users_controller import users_bp


def register_controllers(app):
    app.register_blueprint(admin_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(setup_bp)
    app.register_blueprint(users_bp)
