from feira import create_app
from feira.celery_app import create_celery_app

# Worker / beat entrypoint: celery -A celery_app.celery worker --beat
flask_app = create_app()
celery = flask_app.extensions.get("celery") or create_celery_app(flask_app)
