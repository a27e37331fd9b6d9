# Worker entry point: celery -A celery_app.celery worker -Q dispatch,notifications
from marketrun import create_app
from marketrun.celery_app import create_celery_app

celery = create_celery_app(create_app())
