"""Configuración, storage y esquema compartidos por el gateway y los jobs."""
