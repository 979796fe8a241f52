from .config import load_settings
from .server import create_app

settings = load_settings()
app = create_app(settings)

# local dev helper
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=settings.port, debug=True)
