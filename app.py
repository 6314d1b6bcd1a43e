import os
import logging
from flask import Flask
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

# Import database instance
from database import db

load_dotenv()

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

# Create the app
app = Flask(__name__)
# External systems (payment callbacks, front-ends) call the JSON API, so
# CORS is enabled for the `/api/*` namespace only.
CORS(app, resources={r"/api/*": {"origins": os.environ.get("ALLOWED_ORIGINS", "*")}})
app.secret_key = os.environ.get("SESSION_SECRET", "dev-secret-key-change-in-production")
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

# Configure the database
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///marketplace.db")
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

# Initialize extensions
db.init_app(app)

# Import routes and register them with the app
from routes import register_routes
register_routes(app)

with app.app_context():
    # Import models to create tables
    import models  # noqa: F401

    db.create_all()

if __name__ == '__main__':
    # Start background services in separate threads
    import threading
    from scheduler import start_background_services

    bg_thread = threading.Thread(target=start_background_services, daemon=True)
    bg_thread.start()

    app.run(host='0.0.0.0', port=5000, debug=True)
