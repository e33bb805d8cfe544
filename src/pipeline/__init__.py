"""
Upload Processing Pipeline

- stages: background removal (rembg) behind a timeout
- tasks: Celery drain task
- dispatch: how intake asks for a drain (celery, inline, none)
"""
