"""Converso API Service.

This package contains the FastAPI application and the WhatsApp message
pipeline.

Main components:
- main.py: FastAPI application, logging setup, health check
- routers/whatsapp.py: Twilio webhook endpoint
- orchestrators/: message orchestrator, acknowledgment guard, background tasks
- embeddings.py, retrieval.py, composer.py, guardrails.py: pipeline stages
- twilio.py: Twilio signature validation and outbound delivery
- reprocessing.py: background regeneration of over-long answers
"""

# Importing api.main builds the app and configures logging; keep the package
# import free of side effects.
__all__ = []
