# backend/spacebook/routes/__init__.py
