"""Server configuration management.

Configuration is loaded from a single YAML file:

    host: 127.0.0.1
    ports:
      http: 8080
      https: 8443
    ssl:                     # optional; enables the TLS listener
      key: certs/server.key
      cert: certs/server.crt
    root: public             # document root for static files
    index: index.html
    extensions:              # extension -> {type, dirs, expires}
      js:
        type: application/javascript
        dirs: [/scripts]
        expires: 3600
    dev: false               # x-sourcemap hints for scripts
    gzip: false              # negotiate Content-Encoding from Accept-Encoding
    reply_timeout: 30
    session:
      cookie: sid
      ttl: 3600

Relative paths (root, ssl.key, ssl.cert) resolve against the directory of
the config file.

Resolution order for the config file:
1. $DELIVERY_CONFIG environment variable
2. ./delivery.yaml in the working directory
3. /usr/local/etc/delivery/delivery.yaml (FHS)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8080
DEFAULT_HTTPS_PORT = 8443
DEFAULT_REPLY_TIMEOUT = 30.0
DEFAULT_CHUNK_SIZE = 16384
DEFAULT_MAX_BODY = 1_048_576
CONFIG_FILENAME = "delivery.yaml"
FHS_CONFIG = Path("/usr/local/etc/delivery") / CONFIG_FILENAME


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class Ports:
    http: int = DEFAULT_HTTP_PORT
    https: int = DEFAULT_HTTPS_PORT


@dataclass
class SSLPaths:
    """Key/cert material for the TLS listener."""
    key: Path
    cert: Path


@dataclass
class ExtensionRule:
    """How files with one extension are served.

    `dirs` lists URL directories (and everything beneath them) the
    extension may be served from.
    """
    type: str
    dirs: list = field(default_factory=lambda: ["/"])
    expires: Optional[int] = None


@dataclass
class SessionSettings:
    cookie: str = "sid"
    ttl: int = 3600


def default_extensions() -> dict:
    """Extension map used when the config file provides none."""
    return {
        "html": ExtensionRule("text/html"),
        "htm": ExtensionRule("text/html"),
        "css": ExtensionRule("text/css", expires=3600),
        "js": ExtensionRule("application/javascript", expires=3600),
        "map": ExtensionRule("application/json"),
        "json": ExtensionRule("application/json"),
        "txt": ExtensionRule("text/plain"),
        "svg": ExtensionRule("image/svg+xml", expires=86400),
        "png": ExtensionRule("image/png", expires=86400),
        "jpg": ExtensionRule("image/jpeg", expires=86400),
        "gif": ExtensionRule("image/gif", expires=86400),
        "ico": ExtensionRule("image/x-icon", expires=86400),
        "woff2": ExtensionRule("font/woff2", expires=86400),
    }


@dataclass
class ServerConfig:
    """Startup configuration for the delivery server."""
    host: str = DEFAULT_HOST
    ports: Ports = field(default_factory=Ports)
    ssl: Optional[SSLPaths] = None
    root: Path = field(default_factory=lambda: Path("public"))
    index: str = "index.html"
    extensions: dict = field(default_factory=default_extensions)
    dev: bool = False
    gzip: bool = False
    reply_timeout: float = DEFAULT_REPLY_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_body: int = DEFAULT_MAX_BODY
    session: SessionSettings = field(default_factory=SessionSettings)

    def __post_init__(self):
        if isinstance(self.root, str):
            self.root = Path(self.root)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Optional[Path] = None) -> "ServerConfig":
        """Build a config from parsed YAML.

        Raises:
            ConfigError: On missing or mistyped values
        """
        if not isinstance(data, dict):
            raise ConfigError("Config must be a mapping")
        base_dir = base_dir or Path.cwd()

        ports_data = data.get("ports") or {}
        if not isinstance(ports_data, dict):
            raise ConfigError("'ports' must be a mapping")
        ports = Ports(
            http=_port(ports_data.get("http", DEFAULT_HTTP_PORT), "ports.http"),
            https=_port(ports_data.get("https", DEFAULT_HTTPS_PORT), "ports.https"),
        )

        ssl_paths = None
        if ssl_data := data.get("ssl"):
            if not isinstance(ssl_data, dict) or not ssl_data.get("key") or not ssl_data.get("cert"):
                raise ConfigError("'ssl' requires both 'key' and 'cert'")
            ssl_paths = SSLPaths(
                key=_resolve(ssl_data["key"], base_dir),
                cert=_resolve(ssl_data["cert"], base_dir),
            )

        extensions = default_extensions()
        if (ext_data := data.get("extensions")) is not None:
            extensions = _parse_extensions(ext_data)

        session_data = data.get("session") or {}
        if not isinstance(session_data, dict):
            raise ConfigError("'session' must be a mapping")

        try:
            return cls(
                host=str(data.get("host", DEFAULT_HOST)),
                ports=ports,
                ssl=ssl_paths,
                root=_resolve(data.get("root", "public"), base_dir),
                index=str(data.get("index", "index.html")),
                extensions=extensions,
                dev=bool(data.get("dev", False)),
                gzip=bool(data.get("gzip", False)),
                reply_timeout=float(data.get("reply_timeout", DEFAULT_REPLY_TIMEOUT)),
                chunk_size=int(data.get("chunk_size", DEFAULT_CHUNK_SIZE)),
                max_body=int(data.get("max_body", DEFAULT_MAX_BODY)),
                session=SessionSettings(
                    cookie=str(session_data.get("cookie", "sid")),
                    ttl=int(session_data.get("ttl", 3600)),
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e


def _port(value, name: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if not 0 <= port <= 65535:
        raise ConfigError(f"{name} out of range: {port}")
    return port


def _resolve(value, base_dir: Path) -> Path:
    path = Path(str(value)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path


def _parse_extensions(data) -> dict:
    """Parse the extension map, normalizing keys to bare lower-case."""
    if not isinstance(data, dict):
        raise ConfigError("'extensions' must be a mapping")
    extensions = {}
    for ext, rule in data.items():
        name = str(ext).lstrip(".").lower()
        if not isinstance(rule, dict) or not rule.get("type"):
            raise ConfigError(f"Extension '{name}' requires a 'type'")
        dirs = rule.get("dirs", ["/"])
        if isinstance(dirs, str):
            dirs = [dirs]
        expires = rule.get("expires")
        extensions[name] = ExtensionRule(
            type=str(rule["type"]),
            dirs=[_normalize_dir(d) for d in dirs],
            expires=int(expires) if expires is not None else None,
        )
    return extensions


def _normalize_dir(value) -> str:
    text = "/" + str(value).strip("/")
    return text


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config_path() -> Path:
    """Discover the config file.

    Raises:
        ConfigError: If no config file is found
    """
    if env_path := os.environ.get("DELIVERY_CONFIG"):
        path = Path(env_path)
        if path.is_file():
            return path
        raise ConfigError(f"DELIVERY_CONFIG={env_path} does not exist")

    local = Path.cwd() / CONFIG_FILENAME
    if local.is_file():
        return local

    if FHS_CONFIG.is_file():
        return FHS_CONFIG

    raise ConfigError(
        f"{CONFIG_FILENAME} not found. "
        "Set DELIVERY_CONFIG or pass --config."
    )


def load_config(path: Optional[Path] = None) -> ServerConfig:
    """Load and validate a ServerConfig from YAML.

    Args:
        path: Config file (default: discovered via get_config_path)

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    path = Path(path) if path is not None else get_config_path()
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = _parse_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return ServerConfig.from_dict(data, base_dir=path.resolve().parent)
