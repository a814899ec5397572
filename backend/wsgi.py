# backend/wsgi.py
from lockstock import create_app

app = create_app()
