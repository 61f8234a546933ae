"""Gateway HTTP de telemetría y relay de comandos para dispositivos de riego."""
