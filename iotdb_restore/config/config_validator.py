"""Configuration validation for the restore tool."""

from typing import Dict, Any


class ConfigValidator:
    """Validates restore tool configuration."""

    REQUIRED_SECTIONS = ['kubernetes', 'backup']
    REQUIRED_KUBERNETES_FIELDS = ['namespace', 'pod_name']
    DOWNLOAD_MODES = ['local', 'remote']
    CLASSIFIERS = ['marker', 'exit_status']

    def validate(self, config: Dict[str, Any]) -> None:
        """Validate configuration data.

        Args:
            config: Configuration dictionary to validate.

        Raises:
            ValueError: If configuration is invalid.
        """
        self._validate_structure(config)
        self._validate_kubernetes(config['kubernetes'] or {})
        self._validate_backup(config['backup'] or {})

        if 'iotdb' in config:
            self._validate_iotdb(config['iotdb'] or {})

        if 'import' in config:
            self._validate_import(config['import'] or {})

        if 'notification' in config:
            self._validate_notification(config['notification'] or {})

    def _validate_structure(self, config: Dict[str, Any]) -> None:
        """Validate basic configuration structure.

        Args:
            config: Configuration dictionary.

        Raises:
            ValueError: If required sections are missing.
        """
        missing_sections = []
        for section in self.REQUIRED_SECTIONS:
            if section not in config:
                missing_sections.append(section)

        if missing_sections:
            raise ValueError(f"Missing required configuration sections: {missing_sections}")

        for section, value in config.items():
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"Configuration section '{section}' must be a mapping")

    def _validate_kubernetes(self, kube_config: Dict[str, Any]) -> None:
        missing_fields = [field for field in self.REQUIRED_KUBERNETES_FIELDS
                          if not kube_config.get(field)]
        if missing_fields:
            raise ValueError(f"Kubernetes configuration missing required fields: {missing_fields}")

        if 'exec_timeout_seconds' in kube_config:
            self._require_positive_number(kube_config, 'exec_timeout_seconds', 'kubernetes')

    def _validate_backup(self, backup_config: Dict[str, Any]) -> None:
        """Validate backup source configuration.

        Args:
            backup_config: Backup configuration dictionary.

        Raises:
            ValueError: If the backup source is invalid.
        """
        base_url = backup_config.get('base_url')
        if not base_url:
            raise ValueError("Backup configuration missing required field: base_url")

        if not str(base_url).startswith(('http://', 'https://')):
            raise ValueError(f"Backup base_url must be an http(s) URL: {base_url}")

        mode = backup_config.get('download_mode', 'local')
        if mode not in self.DOWNLOAD_MODES:
            raise ValueError(f"Backup download_mode must be one of {self.DOWNLOAD_MODES}, got: {mode}")

        if 'retry_count' in backup_config:
            self._require_positive_int(backup_config, 'retry_count', 'backup')

        if 'retry_delay_seconds' in backup_config:
            delay = backup_config['retry_delay_seconds']
            if not isinstance(delay, (int, float)) or isinstance(delay, bool) or delay < 0:
                raise ValueError(f"Backup retry_delay_seconds must be a non-negative number: {delay}")

    def _validate_iotdb(self, iotdb_config: Dict[str, Any]) -> None:
        databases = iotdb_config.get('databases', [])
        if not isinstance(databases, list):
            raise ValueError("IoTDB databases must be a list")

    def _validate_import(self, import_config: Dict[str, Any]) -> None:
        """Validate import tuning.

        Args:
            import_config: Import configuration dictionary.

        Raises:
            ValueError: If a tuning value is out of range.
        """
        for field in ('concurrency', 'batch_size'):
            if field in import_config:
                self._require_positive_int(import_config, field, 'import')

        if 'batch_delay' in import_config:
            delay = import_config['batch_delay']
            if not isinstance(delay, (int, float)) or isinstance(delay, bool) or delay < 0:
                raise ValueError(f"Import batch_delay must be a non-negative number: {delay}")

        classifier = import_config.get('classifier', 'marker')
        if classifier not in self.CLASSIFIERS:
            raise ValueError(f"Import classifier must be one of {self.CLASSIFIERS}, got: {classifier}")

        markers = import_config.get('success_markers', ['success'])
        if not isinstance(markers, list) or not markers:
            raise ValueError("Import success_markers must be a non-empty list")

    def _validate_notification(self, notification_config: Dict[str, Any]) -> None:
        wechat = notification_config.get('wechat') or {}
        if notification_config.get('enabled') and wechat.get('enabled') and not wechat.get('webhook_url'):
            raise ValueError("Notification wechat.webhook_url is required when notifications are enabled")

    @staticmethod
    def _require_positive_int(section: Dict[str, Any], field: str, section_name: str) -> None:
        value = section[field]
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"{section_name.capitalize()} {field} must be a positive integer: {value}")

    @staticmethod
    def _require_positive_number(section: Dict[str, Any], field: str, section_name: str) -> None:
        value = section[field]
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"{section_name.capitalize()} {field} must be a positive number: {value}")
