"""Configuration parsing and normalization helpers for Signpost.

Brief:
  This module turns the YAML config file and the command-line flags into one
  frozen ProxySettings value. It centralizes:
    - reading and schema-validating YAML config files
    - parsing the flag formats (domain=host:port lists, comma lists, :port)
    - merging flag overrides over file values
    - building the immutable routing table / allow-list from settings

Inputs:
  - YAML config dicts and paths, CLI flag strings

Outputs:
  - ProxySettings and the runtime objects derived from it
"""

from __future__ import annotations

import ipaddress
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..authorizer import TransferAuthorizer
from ..routing import RoutingTable, normalize_suffix, split_host_port, with_default_port
from .config_schema import validate_config


class ListenSettings(BaseModel):
    """Brief: Listener configuration shared by the UDP and TCP sockets.

    Inputs:
      - host: Listen host; "" binds every interface.
      - port: Listen port (0 picks a free port).
      - udp / tcp: Enable each transport.
      - tcp_idle_timeout: Seconds an idle TCP connection is kept open.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = ""
    port: int = Field(default=53, ge=0, le=65535)
    udp: bool = True
    tcp: bool = True
    tcp_idle_timeout: float = Field(default=15.0, gt=0)


class RouteSpec(BaseModel):
    """Brief: One suffix route; suffix is normalized, upstream validated."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    suffix: str
    upstream: str

    @field_validator("suffix")
    @classmethod
    def _normalize_suffix(cls, v: str) -> str:
        return normalize_suffix(v)

    @field_validator("upstream")
    @classmethod
    def _check_upstream(cls, v: str) -> str:
        split_host_port(v)
        return v.strip()


class ProxySettings(BaseModel):
    """Brief: Complete, validated proxy configuration.

    Inputs:
      - listen: ListenSettings.
      - routes: Suffix routes in configuration order.
      - allow_transfer: IP literals allowed to run AXFR/IXFR.
      - default_upstreams: Optional fallback pool replacing the built-in public
        resolvers (config key ``default``).
      - timeout_ms: Upstream timeout for ordinary lookups.
      - transfer_timeout_ms: Per-read timeout while relaying a transfer.

    Outputs:
      - Frozen settings value built once before any listener starts.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    listen: ListenSettings = Field(default_factory=ListenSettings)
    routes: Tuple[RouteSpec, ...] = ()
    allow_transfer: Tuple[str, ...] = ()
    default_upstreams: Tuple[str, ...] = Field(default=(), alias="default")
    timeout_ms: int = Field(default=2000, ge=1)
    transfer_timeout_ms: int = Field(default=5000, ge=1)

    @field_validator("allow_transfer")
    @classmethod
    def _check_allow_transfer(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        out = []
        for entry in v:
            text = str(entry).strip()
            if not text:
                continue
            try:
                ipaddress.ip_address(text)
            except ValueError:
                raise ValueError(
                    f"allow_transfer entry {text!r} is not an IP address"
                ) from None
            out.append(text)
        return tuple(out)

    @field_validator("default_upstreams")
    @classmethod
    def _check_default(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        out = []
        for entry in v:
            addr = with_default_port(entry)
            split_host_port(addr)
            out.append(addr)
        return tuple(out)

    def routing_table(self) -> RoutingTable:
        return RoutingTable.build(
            [(r.suffix, r.upstream) for r in self.routes],
            fallback=self.default_upstreams or None,
        )

    def authorizer(self) -> TransferAuthorizer:
        return TransferAuthorizer.build(self.allow_transfer)


def split_list(value: Any) -> List[str]:
    """Brief: Normalize a comma-separated string or a list into stripped items.

    Example:
      >>> split_list("1.2.3.4, ::1,")
      ['1.2.3.4', '::1']
    """

    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return [s.strip() for s in items if s.strip()]


def parse_route_list(text: str) -> List[Tuple[str, str]]:
    """Brief: Parse the ``--route`` flag format.

    Inputs:
      - text: "domain=host:port[,domain=host:port...]".

    Outputs:
      - list of (domain, "host:port") pairs in flag order.

    Raises:
      - ValueError for entries without "=" or with an invalid host:port.

    Example:
      >>> parse_route_list(".example.com.=8.8.4.4:53")
      [('.example.com.', '8.8.4.4:53')]
    """

    routes: List[Tuple[str, str]] = []
    for item in split_list(text):
        domain, sep, upstream = item.partition("=")
        try:
            if not sep:
                raise ValueError("missing '='")
            split_host_port(upstream)
        except ValueError as exc:
            raise ValueError(
                f"invalid route {item!r}, must be list of domain=host:port ({exc})"
            ) from None
        routes.append((domain.strip(), upstream.strip()))
    return routes


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Brief: Parse a listen address such as ":53", "127.0.0.1:5353", "[::1]:53".

    Outputs:
      - (host, port); host is "" when only a port is given.
    """

    text = str(address).strip()
    if text.startswith(":"):
        text = "0" + text
        _, port = split_host_port(text)
        return "", port
    return split_host_port(text)


def _normalize_routes(raw: Any) -> List[Dict[str, str]]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        return [{"suffix": str(k), "upstream": str(v)} for k, v in raw.items()]
    if isinstance(raw, list):
        return [dict(r) for r in raw]
    raise ValueError("config.routes must be a list or a mapping")


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration mapping.

    Raises:
      - ValueError: When the root is not a mapping or schema validation fails.
      - OSError: When the file cannot be read.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    validate_config(cfg, config_path=config_path)
    return cfg


def apply_cli_overrides(
    cfg: Dict[str, Any],
    *,
    address: Optional[str] = None,
    routes: Optional[str] = None,
    allow_transfer: Optional[str] = None,
    default: Optional[str] = None,
) -> Dict[str, Any]:
    """Brief: Return a copy of *cfg* with command-line flag values applied.

    Inputs:
      - cfg: Parsed configuration mapping (not mutated).
      - address: ``--address`` value, e.g. ":53".
      - routes: ``--route`` value, replaces file routes when given.
      - allow_transfer: ``--allow-transfer`` comma list.
      - default: ``--default`` comma list of fallback upstreams.

    Outputs:
      - dict: New configuration mapping.
    """

    out = dict(cfg)
    if address is not None:
        host, port = parse_listen_address(address)
        listen = dict(out.get("listen") or {})
        listen.pop("address", None)
        listen["host"] = host
        listen["port"] = port
        out["listen"] = listen
    if routes is not None:
        out["routes"] = [
            {"suffix": d, "upstream": u} for d, u in parse_route_list(routes)
        ]
    if allow_transfer is not None:
        out["allow_transfer"] = split_list(allow_transfer)
    if default is not None:
        out["default"] = split_list(default)
    return out


def build_settings(cfg: Dict[str, Any]) -> ProxySettings:
    """Brief: Build frozen ProxySettings from a configuration mapping.

    Inputs:
      - cfg: Mapping shaped like config.yaml (``logging`` is ignored here).

    Outputs:
      - ProxySettings.

    Raises:
      - ValueError: For invalid routes, addresses or values.

    Example:
      >>> s = build_settings({"routes": {"example.com": "8.8.4.4:53"}})
      >>> s.routes[0].suffix
      'example.com.'
    """

    listen = dict(cfg.get("listen") or {})
    address = listen.pop("address", None)
    if address:
        host, port = parse_listen_address(address)
        listen.setdefault("host", host)
        listen.setdefault("port", port)

    data: Dict[str, Any] = {
        "listen": listen,
        "routes": _normalize_routes(cfg.get("routes")),
        "allow_transfer": split_list(cfg.get("allow_transfer")),
        "default": split_list(cfg.get("default")),
    }
    for key in ("timeout_ms", "transfer_timeout_ms"):
        if cfg.get(key) is not None:
            data[key] = cfg[key]

    try:
        return ProxySettings(**data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
