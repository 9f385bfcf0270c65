"""Built-in service presets and client usage hints."""

from .models import PresetService

DEFAULT_PRESETS: dict[str, PresetService] = {
    "mysql": PresetService(name="MySQL", remote=3306, local=3306),
    "postgres": PresetService(name="PostgreSQL", remote=5432, local=5432),
    "redis": PresetService(name="Redis", remote=6379, local=6379),
    "mongodb": PresetService(name="MongoDB", remote=27017, local=27017),
    "elasticsearch": PresetService(name="Elasticsearch", remote=9200, local=9200),
    "rabbitmq": PresetService(name="RabbitMQ", remote=5672, local=5672),
    "kafka": PresetService(name="Kafka", remote=9092, local=9092),
    "nginx": PresetService(name="Nginx", remote=80, local=8080),
    "api": PresetService(name="API", remote=8080, local=8080),
    "admin": PresetService(name="Admin", remote=8090, local=8090),
}

_USAGE_TEMPLATES = {
    "mysql": "mysql -h 127.0.0.1 -P {port} -u <username> -p",
    "postgres": "psql -h 127.0.0.1 -p {port} -U <username>",
    "redis": "redis-cli -p {port}",
    "mongodb": "mongosh --port {port}",
    "elasticsearch": "curl http://127.0.0.1:{port}",
    "nginx": "http://127.0.0.1:{port}",
    "api": "http://127.0.0.1:{port}",
    "admin": "http://127.0.0.1:{port}",
}


def default_presets() -> dict[str, PresetService]:
    """Return a fresh copy of the built-in catalog."""
    return {key: preset.model_copy() for key, preset in DEFAULT_PRESETS.items()}


def usage_hint(service: str | None, local_port: int) -> str:
    """Client command line for a forwarded service.

    Args:
        service: Service key (``mysql``, ``redis``...)
        local_port: Local port the tunnel is bound to

    Returns:
        A command or URL, or ``127.0.0.1:<port>`` for unknown services
    """
    template = _USAGE_TEMPLATES.get((service or "").lower())
    if template is None:
        return f"127.0.0.1:{local_port}"
    return template.format(port=local_port)
