# backend/spacebook/middleware/__init__.py
