"""Configuration management for the IoTDB restore tool."""

import os
import yaml
from typing import Dict, Any, Mapping, Optional
from .config_validator import ConfigValidator
from ..core.models import RestoreSettings


class ConfigManager:
    """Manages configuration loading and validation for restores."""

    DEFAULT_CONFIG_LOCATIONS = [
        "config.yaml",
        "config.yml",
        "configs/config.yaml",
        os.path.expanduser("~/.iotdb-restore/config.yaml"),
        "/etc/iotdb-restore/config.yaml",
    ]

    ENV_PREFIX = "IOTDB_RESTORE_"
    SECTIONS = ['kubernetes', 'iotdb', 'backup', 'import', 'notification']
    NESTED_SECTIONS = {'notification': ['wechat']}

    def __init__(self, config_path: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional path to config file. If not provided,
                        will search in default locations.
            environ: Environment used for overrides. Defaults to ``os.environ``.
        """
        self.config_path = config_path
        self.environ = os.environ if environ is None else environ
        self.config_data: Dict[str, Any] = {}
        self.validator = ConfigValidator()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file.

        Values from ``IOTDB_RESTORE_<SECTION>_<KEY>`` environment variables
        override the file before validation.

        Returns:
            Dictionary containing configuration data.

        Raises:
            FileNotFoundError: If config file cannot be found.
            ValueError: If config file is invalid.
        """
        config_file = self._find_config_file()

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                self.config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_file}: {e}")
        except OSError as e:
            raise ValueError(f"Error reading config file {config_file}: {e}")

        if not isinstance(self.config_data, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")

        self._apply_env_overrides()

        # Validate configuration
        self.validator.validate(self.config_data)

        # Set defaults
        self._set_defaults()

        return self.config_data

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Apply command-line overrides given as ``{'section.key': value}``.

        ``None`` values are ignored. The merged result is validated again.
        """
        for dotted_key, value in overrides.items():
            if value is None:
                continue
            section, key = dotted_key.split('.', 1)
            self.config_data.setdefault(section, {})[key] = value

        self.validator.validate(self.config_data)

    def _find_config_file(self) -> str:
        """Find configuration file in default locations.

        Returns:
            Path to configuration file.

        Raises:
            FileNotFoundError: If no config file is found.
        """
        if self.config_path:
            if os.path.exists(self.config_path):
                return self.config_path
            else:
                raise FileNotFoundError(f"Config file not found: {self.config_path}")

        for location in self.DEFAULT_CONFIG_LOCATIONS:
            if os.path.exists(location):
                return location

        raise FileNotFoundError(
            f"Configuration file not found in any of these locations:\n" +
            "\n".join(f"  - {loc}" for loc in self.DEFAULT_CONFIG_LOCATIONS) +
            "\n\nPlease copy config.example.yaml to config.yaml and customize it."
        )

    def _apply_env_overrides(self) -> None:
        """Merge ``IOTDB_RESTORE_*`` variables into the loaded configuration."""
        for name, raw_value in self.environ.items():
            if not name.startswith(self.ENV_PREFIX):
                continue

            remainder = name[len(self.ENV_PREFIX):].lower()
            for section in self.SECTIONS:
                if not remainder.startswith(section + '_'):
                    continue
                key = remainder[len(section) + 1:]
                target = self.config_data.setdefault(section, {}) or {}
                self.config_data[section] = target

                for child in self.NESTED_SECTIONS.get(section, []):
                    if key.startswith(child + '_'):
                        target = target.setdefault(child, {})
                        key = key[len(child) + 1:]
                        break

                target[key] = self._parse_env_value(raw_value)
                break

    @staticmethod
    def _parse_env_value(raw_value: str) -> Any:
        try:
            return yaml.safe_load(raw_value)
        except yaml.YAMLError:
            return raw_value

    def _set_defaults(self):
        """Set default values for optional configuration parameters."""
        defaults = {
            'kubernetes': {
                'kubeconfig': '',
                'context': '',
                'container': '',
                'exec_timeout_seconds': 1800
            },
            'iotdb': {
                'data_dir': '/iotdb/data',
                'cli_path': '/iotdb/sbin/start-cli.sh',
                'host': 'iotdb-datanode',
                'tsfile_subdir': 'iotdb/data/datanode',
                'databases': ['root.emsplus', 'root.energy']
            },
            'backup': {
                'download_dir': '/tmp',
                'local_dir': '/tmp/iotdb-restore',
                'download_mode': 'local',
                'auto_detect_timestamp': True,
                'timestamp_pattern': '',
                'retry_count': 3,
                'retry_delay_seconds': 5,
                'http_timeout_seconds': 1800
            },
            'import': {
                'concurrency': 1,
                'batch_size': 3,
                'batch_pause': True,
                'batch_delay': 3,
                'log_memory': False,
                'classifier': 'marker',
                'success_markers': ['success']
            },
            'notification': {
                'enabled': False,
                'environment': '',
                'wechat': {}
            }
        }

        # Merge defaults with existing config
        for section, section_defaults in defaults.items():
            if not self.config_data.get(section):
                self.config_data[section] = {}
            for key, value in section_defaults.items():
                if key not in self.config_data[section]:
                    self.config_data[section][key] = value

    def get_kubernetes_config(self) -> Dict[str, Any]:
        """Get Kubernetes target configuration.

        Returns:
            Kubernetes configuration dictionary.
        """
        return self.config_data.get('kubernetes', {})

    def get_iotdb_config(self) -> Dict[str, Any]:
        return self.config_data.get('iotdb', {})

    def get_backup_config(self) -> Dict[str, Any]:
        return self.config_data.get('backup', {})

    def get_import_config(self) -> Dict[str, Any]:
        return self.config_data.get('import', {})

    def get_notification_config(self) -> Dict[str, Any]:
        """Get notification configuration.

        Returns:
            Notification configuration dictionary.
        """
        return self.config_data.get('notification', {})

    def get_restore_settings(self) -> RestoreSettings:
        """Resolve the loaded configuration into settings for the restore core."""
        kube = self.get_kubernetes_config()
        iotdb = self.get_iotdb_config()
        backup = self.get_backup_config()
        imports = self.get_import_config()

        return RestoreSettings(
            namespace=kube['namespace'],
            pod_name=kube['pod_name'],
            kubeconfig=kube['kubeconfig'] or '',
            context=kube['context'] or '',
            container=kube['container'] or '',
            exec_timeout_seconds=kube['exec_timeout_seconds'],
            base_url=backup['base_url'],
            data_dir=str(iotdb['data_dir']).rstrip('/'),
            cli_path=iotdb['cli_path'],
            host=iotdb['host'],
            tsfile_subdir=iotdb['tsfile_subdir'],
            databases=tuple(iotdb['databases']),
            download_dir=backup['download_dir'],
            local_dir=backup['local_dir'],
            download_mode=backup['download_mode'],
            auto_detect_timestamp=bool(backup['auto_detect_timestamp']),
            timestamp_pattern=backup['timestamp_pattern'] or '',
            retry_count=backup['retry_count'],
            retry_delay_seconds=backup['retry_delay_seconds'],
            http_timeout_seconds=backup['http_timeout_seconds'],
            concurrency=imports['concurrency'],
            batch_size=imports['batch_size'],
            batch_pause=bool(imports['batch_pause']),
            batch_delay=imports['batch_delay'],
            log_memory=bool(imports['log_memory']),
            classifier=imports['classifier'],
            success_markers=tuple(imports['success_markers']),
        )
