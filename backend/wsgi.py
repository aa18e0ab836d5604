# Overview: WSGI entry point (FLASK_APP=wsgi.py).

from wpos import create_app

app = create_app()
