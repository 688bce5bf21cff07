# backend/wsgi.py
from dairy_ledger import create_app

app = create_app()
