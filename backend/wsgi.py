# backend/wsgi.py
from carrental import create_app

app = create_app()
