from __future__ import annotations

import ssl
from pathlib import Path
from pydantic_settings import BaseSettings

MAX_BODY_SIZE = 16 * 1024 * 1024


def _read_secret(path: str | None) -> str | None:
    if not path:
        return None
    p = Path(path)
    if not p.exists():
        return None
    return p.read_text(encoding="utf-8").strip()


class Settings(BaseSettings):
    # HTTP
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    max_body_size: int = MAX_BODY_SIZE
    subscribe_timeout: float = 300.0

    # MQTT
    mqtt_client_id_prefix: str = "mqtt-gateway"
    mqtt_keepalive: int = 60
    mqtt_connect_timeout: float = 10.0
    mqtt_websocket_path: str = "/mqtt"

    # used for ssl://, mqtts:// and wss:// brokers
    mqtt_tls_insecure: bool = False  # if True, skip hostname verification (NOT recommended)
    mqtt_tls_ca_file: str | None = None
    mqtt_tls_cert_file: str | None = None
    mqtt_tls_key_file: str | None = None
    mqtt_tls_key_password_file: str | None = None

    log_level: str = "INFO"
    otel_service_name: str = "mqtt-gateway"
    otel_log_file: str = "logs/mqtt-gateway.jsonl"

    @property
    def mqtt_tls_key_password(self) -> str | None:
        return _read_secret(self.mqtt_tls_key_password_file)

    def mqtt_ssl_context(self) -> ssl.SSLContext:
        # falls back to the system CA bundle
        ctx = ssl.create_default_context(cafile=self.mqtt_tls_ca_file)

        # Optional client cert auth
        if self.mqtt_tls_cert_file and self.mqtt_tls_key_file:
            ctx.load_cert_chain(
                certfile=self.mqtt_tls_cert_file,
                keyfile=self.mqtt_tls_key_file,
                password=self.mqtt_tls_key_password,
            )

        if self.mqtt_tls_insecure:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_REQUIRED  # still require cert, just skip hostname check

        return ctx


settings = Settings()
