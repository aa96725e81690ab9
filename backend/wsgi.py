# backend/wsgi.py
from bodega import create_app

app = create_app()
