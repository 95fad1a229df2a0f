"""
Process configuration.

Settings come from three layers, later ones winning: a YAML file, `WEBHOOK_*`
environment variables and command-line options. Matching rules come from the
YAML file (`rules:`), from a ConfigMap read through the Kubernetes API, or
both; the two sources are compiled with different policies, see `rules.py`.

Example file:

    port: 8443
    cert-file: /etc/webhook/certs/tls.crt
    key-file: /etc/webhook/certs/tls.key
    debug: false
    rules:
      - namespace: dev
        patterns: ["^vm-.*", "-nested$"]
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .rules import RuleCompileError, RuleSet

logger = logging.getLogger(__name__)

ENV_PREFIX = "WEBHOOK_"


class SettingsError(Exception):
    """Raised when configuration cannot be loaded."""


@dataclass
class Settings:
    port: int = 8443
    cert_file: str = "/etc/webhook/certs/tls.crt"
    key_file: str = "/etc/webhook/certs/tls.key"
    debug: bool = False
    configmap_name: Optional[str] = None
    configmap_namespace: str = "default"
    kubeconfig: Optional[str] = None
    cpu_feature: Optional[str] = None
    cpuinfo_path: str = "/proc/cpuinfo"
    rules: List[Dict[str, Any]] = field(default_factory=list)
    _parsed_rules: Optional[RuleSet] = field(default=None, init=False, repr=False, compare=False)

    def parsed_rules(self) -> RuleSet:
        """Compile `rules` once, skipping invalid patterns."""
        if self._parsed_rules is None:
            self._parsed_rules = RuleSet.from_rule_configs(self.rules)
        return self._parsed_rules


_FIELD_TYPES = {f.name: f.type for f in dataclasses.fields(Settings) if f.init}
_FIELD_ALIASES = {name.replace("_", ""): name for name in _FIELD_TYPES}


def _normalise_key(key: str) -> Optional[str]:
    """Map kebab-case, snake_case and camelCase keys to field names."""
    return _FIELD_ALIASES.get(key.replace("-", "").replace("_", "").lower())


def _coerce(name: str, value: Any) -> Any:
    kind = _FIELD_TYPES[name]
    if value is None:
        return None
    if kind in (int, "int"):
        if isinstance(value, bool):
            raise SettingsError(f"{name}: expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise SettingsError(f"{name}: expected an integer, got {value!r}") from exc
    if kind in (bool, "bool"):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on"):
            return True
        if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", "off", ""):
            return False
        raise SettingsError(f"{name}: expected a boolean, got {value!r}")
    if name == "rules":
        if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
            raise SettingsError("rules: expected a list of {namespace, patterns} entries")
        return value
    if isinstance(value, (dict, list)):
        raise SettingsError(f"{name}: expected a string, got {value!r}")
    return str(value)


def merge_with_overrides(overrides: Mapping[str, Any], base: Optional[Settings]) -> Settings:
    """Return a copy of `base` with every set key of `overrides` applied.

    Keys whose value is None are ignored so that unset options never clear
    values from a lower layer.
    """
    merged = dataclasses.replace(base) if base is not None else Settings(
        port=0, cert_file="", key_file="", configmap_namespace="", cpuinfo_path=""
    )
    for key, value in overrides.items():
        name = _normalise_key(str(key))
        if name is None:
            logger.debug("ignoring unknown setting %s", key)
            continue
        value = _coerce(name, value)
        if value is not None:
            setattr(merged, name, value)
    return merged


def load_settings(path: Optional[str]) -> Settings:
    """Load settings from a YAML file on top of the defaults."""
    if not path:
        return Settings()
    try:
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise SettingsError(f"failed to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise SettingsError(f"failed to parse config file {path}: {exc}") from exc
    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise SettingsError(f"config file {path} must contain a mapping")
    return merge_with_overrides(data, Settings())


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect `WEBHOOK_<FIELD>` environment variables."""
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for name in _FIELD_TYPES:
        if name == "rules":
            continue
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_configmap_rules(name: str, namespace: str, kubeconfig: Optional[str] = None) -> RuleSet:
    """Read a rules ConfigMap and compile it, rejecting any invalid pattern."""
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig)
        else:
            config.load_incluster_config()
        configmap = client.CoreV1Api().read_namespaced_config_map(name=name, namespace=namespace)
    except (ApiException, ConfigException) as exc:
        raise SettingsError(f"failed to get ConfigMap {namespace}/{name}: {exc}") from exc

    try:
        return RuleSet.from_configmap_data(configmap.data or {})
    except RuleCompileError as exc:
        raise SettingsError(f"failed to parse ConfigMap {namespace}/{name}: {exc}") from exc


def build_rules(settings: Settings) -> RuleSet:
    rules = settings.parsed_rules()
    if settings.configmap_name:
        rules = rules.extend(
            load_configmap_rules(settings.configmap_name, settings.configmap_namespace, settings.kubeconfig)
        )
    return rules
