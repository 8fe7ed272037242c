"""
JSON-backed persisted configuration: MCP servers, authorization and recursion depth.
"""

from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ...domain.services.recursion import DEFAULT_MAX_DEPTH, parse_max_depth


def _default_document(max_depth: Union[int, str] = DEFAULT_MAX_DEPTH) -> Dict[str, Any]:
    return {
        "servers": [],
        "authorization": {"defaultAutoAuthorize": False, "serverConfigs": {}},
        "maxToolRecursionDepth": max_depth,
    }


class JsonConfigStore:
    """
    One JSON document holding ``servers``, ``authorization`` and
    ``maxToolRecursionDepth``. Read or write failures fall back to defaults.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, data: Optional[Dict[str, Any]] = None,
                 default_max_depth: Union[int, str] = DEFAULT_MAX_DEPTH, logger: Optional[logging.Logger] = None):
        self._path = Path(path).expanduser() if path else None
        self._logger = logger or logging.getLogger(__name__)
        self._default_max_depth = default_max_depth
        self._data = _default_document(default_max_depth)
        if data is not None:
            self._merge(data)
        elif self._path is not None:
            self.load()

    # ---------- Persistence ----------
    def load(self) -> None:
        """Reload from disk; an unreadable file keeps the defaults."""
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._logger.warning(f"Ignoring unreadable config {self._path}: {e}")
            return
        if isinstance(raw, dict):
            self._data = _default_document(self._default_max_depth)
            self._merge(raw)

    def save(self) -> bool:
        if self._path is None:
            return False
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._data, indent=2, ensure_ascii=False), encoding="utf-8")
            return True
        except OSError as e:
            self._logger.warning(f"Failed to write config {self._path}: {e}")
            return False

    def _merge(self, raw: Dict[str, Any]) -> None:
        servers = raw.get("servers")
        if isinstance(servers, list):
            self._data["servers"] = [s for s in servers if isinstance(s, dict) and s.get("name")]
        auth = raw.get("authorization")
        if isinstance(auth, dict):
            self._data["authorization"]["defaultAutoAuthorize"] = bool(auth.get("defaultAutoAuthorize", False))
            configs = auth.get("serverConfigs")
            if isinstance(configs, dict):
                self._data["authorization"]["serverConfigs"] = {
                    str(k): dict(v) for k, v in configs.items() if isinstance(v, dict)
                }
        if "maxToolRecursionDepth" in raw:
            self._data["maxToolRecursionDepth"] = raw["maxToolRecursionDepth"]

    def to_dict(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self._data))

    # ---------- Servers ----------
    def get_server_config(self, name: str) -> Optional[Dict[str, Any]]:
        for server in self._data["servers"]:
            if server.get("name") == name:
                config = server.get("config")
                return dict(config) if isinstance(config, dict) else {}
        return None

    def enabled_servers(self) -> List[str]:
        return [s["name"] for s in self._data["servers"] if s.get("enabled", True)]

    def upsert_server(self, name: str, config: Dict[str, Any], enabled: bool = True) -> None:
        servers = [s for s in self._data["servers"] if s.get("name") != name]
        servers.append({"name": name, "config": dict(config), "enabled": enabled})
        self._data["servers"] = servers
        self.save()

    # ---------- Authorization ----------
    def default_auto_authorize(self) -> bool:
        return bool(self._data["authorization"]["defaultAutoAuthorize"])

    def set_default_auto_authorize(self, value: bool) -> None:
        self._data["authorization"]["defaultAutoAuthorize"] = bool(value)
        self.save()

    def _server_overrides(self, name: str) -> Dict[str, Any]:
        return self._data["authorization"]["serverConfigs"].get(name, {})

    def server_auto_authorize(self, name: str) -> Optional[bool]:
        value = self._server_overrides(name).get("autoAuthorize")
        return None if value is None else bool(value)

    def server_max_recursion_depth(self, name: str) -> Optional[int]:
        value = self._server_overrides(name).get("maxRecursionDepth")
        return None if value is None else value

    def set_server_config(
        self,
        name: str,
        auto_authorize: Optional[bool] = None,
        max_recursion_depth: Optional[Union[int, str]] = None
    ) -> None:
        """Set per-server overrides; None clears a field and empty overrides are removed."""
        configs = self._data["authorization"]["serverConfigs"]
        entry = dict(configs.get(name, {}))
        for key, value in (("autoAuthorize", auto_authorize), ("maxRecursionDepth", max_recursion_depth)):
            if value is None:
                entry.pop(key, None)
            else:
                entry[key] = value
        if entry:
            configs[name] = entry
        else:
            configs.pop(name, None)
        self.save()

    # ---------- Recursion ----------
    def max_recursion_depth(self) -> Union[int, str]:
        depth = parse_max_depth(self._data.get("maxToolRecursionDepth"))
        return "infinite" if depth is None else depth

    def set_max_recursion_depth(self, value: Union[int, str]) -> None:
        depth = parse_max_depth(value)
        self._data["maxToolRecursionDepth"] = "infinite" if depth is None else depth
        self.save()
