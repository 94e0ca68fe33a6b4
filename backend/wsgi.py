# backend/wsgi.py
from orbit import create_app

app = create_app()
