"""
Model Importer Configuration
Reads settings from the process environment with service defaults.
"""

import os
from enum import Enum


class PartialFailurePolicy(str, Enum):
    """What a direct import does when some of its files failed to transfer"""
    BEST_EFFORT = "best_effort"  # record the import as completed anyway
    STRICT = "strict"            # record the import as failed


class ImporterSettings:
    """Model Importer configuration adapter backed by environment variables"""

    def __init__(self, overrides: dict = None):
        self.config = dict(overrides or {})

    def get_config_value(self, key: str, default: str = '') -> str:
        """Get configuration value with fallback to environment variables"""
        return self.config.get(key, os.getenv(key, default))

    @property
    def host(self):
        return self.get_config_value('MODEL_IMPORTER_HOST', '0.0.0.0')

    @property
    def port(self):
        return int(self.get_config_value('MODEL_IMPORTER_PORT', '8085'))

    @property
    def debug(self):
        return self.get_config_value('DEBUG', 'false').lower() == 'true'

    @property
    def log_level(self):
        return self.get_config_value('LOG_LEVEL', 'INFO')

    @property
    def log_format(self):
        return self.get_config_value('LOG_FORMAT', 'text')

    @property
    def cors_origins(self):
        origins = self.get_config_value('CORS_ORIGINS', '*')
        return [origin.strip() for origin in origins.split(',')]

    @property
    def storage_backend(self):
        return self.get_config_value('STORAGE_BACKEND', 'local').lower()

    @property
    def storage_root(self):
        return self.get_config_value('STORAGE_ROOT', './storage')

    @property
    def s3_region(self):
        return self.get_config_value('S3_REGION', 'us-east-1')

    @property
    def metadata_file_name(self):
        return self.get_config_value('METADATA_FILE_NAME', 'model-manager-metadata.json')

    @property
    def metadata_description(self):
        return self.get_config_value(
            'METADATA_DESCRIPTION',
            'This destination is managed by the Model Importer.'
        )

    @property
    def huggingface_endpoint(self):
        return self.get_config_value('HUGGINGFACE_ENDPOINT', 'https://huggingface.co').rstrip('/')

    @property
    def huggingface_token(self):
        return self.get_config_value('HUGGINGFACE_TOKEN', '')

    @property
    def ollama_registry_url(self):
        return self.get_config_value('OLLAMA_REGISTRY_URL', 'https://registry.ollama.ai').rstrip('/')

    @property
    def execution_engine_url(self):
        return self.get_config_value('EXECUTION_ENGINE_URL', '').rstrip('/')

    @property
    def execution_engine_token(self):
        return self.get_config_value('EXECUTION_ENGINE_TOKEN', '')

    @property
    def transfer_chunk_size(self):
        return int(self.get_config_value('TRANSFER_CHUNK_SIZE', str(8 * 1024 * 1024)))

    @property
    def request_timeout(self):
        return float(self.get_config_value('REQUEST_TIMEOUT', '60'))

    @property
    def status_poll_interval(self):
        return float(self.get_config_value('STATUS_POLL_INTERVAL', '0'))

    @property
    def partial_failure_policy(self) -> PartialFailurePolicy:
        return PartialFailurePolicy(
            self.get_config_value('PARTIAL_FAILURE_POLICY', PartialFailurePolicy.BEST_EFFORT.value).lower()
        )


def get_settings(overrides: dict = None) -> ImporterSettings:
    """Get model importer settings instance"""
    return ImporterSettings(overrides)


__all__ = [
    'ImporterSettings', 'PartialFailurePolicy', 'get_settings'
]
