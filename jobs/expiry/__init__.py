"""Expiry job: marca expired los comandos dispatched sin ack.

Alternativa al thread del gateway para despliegues con varias réplicas
(un único cron/worker barriendo en lugar de uno por proceso).

Modules:
- cli: CLI entry point (main)
"""

from .cli import main

__all__ = ["main"]
