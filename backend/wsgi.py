# backend/wsgi.py
from shiftbooks import create_app

app = create_app()
