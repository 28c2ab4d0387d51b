"""Settings library for the remote store and authentication configurations.

Provides:
    - Schema validation and enforcement for the settings.json structure.
    - Loading, saving and reverting application settings.
    - Client secret (client_secret.json) loading and validation.
    - Application file paths (templates, config, credentials).
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'FinTrack'

METADATA_KEYS: List[str] = [
    'locale',
    'currency',
    'session_timeout',
    'remind_days_default',
    'read_retries',
    'budget_alert_threshold',
]

SETTINGS_SCHEMA: Dict[str, Any] = {
    'spreadsheet': {
        'type': dict,
        'required': True,
        'item_schema': {
            'id': {'type': str, 'required': True},
        }
    },
    'metadata': {
        'type': dict,
        'required': True,
        'required_keys': METADATA_KEYS,
        'item_schema': {
            'locale': {'type': str, 'required': True},
            'currency': {'type': str, 'required': True},
            'session_timeout': {'type': int, 'required': True},
            'remind_days_default': {'type': int, 'required': True},
            'read_retries': {'type': int, 'required': True},
            'budget_alert_threshold': {'type': float, 'required': True},
        }
    },
}


def _validate_items(section: str, data: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate the fields of a settings section against its item schema.

    Args:
        section: Name of the section, used in error messages.
        data: The section's data.
        item_schema: Mapping of field names to ``{'type': ..., 'required': ...}`` specs.

    Raises:
        ValueError: If a required field is missing.
        TypeError: If a field has the wrong type.
    """
    logging.debug(f'Validating "{section}" section.')
    for field, field_specs in item_schema.items():
        if field_specs['required'] and field not in data:
            msg = f'Section "{section}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in data:
            continue

        _type = field_specs['type']
        value = data[field]
        # ints are accepted where floats are expected, bools never count as numbers
        if _type is float and isinstance(value, int) and not isinstance(value, bool):
            continue
        if isinstance(value, bool) and _type is not bool:
            msg = f'Section "{section}" field "{field}" must be {_type}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)
        if not isinstance(value, _type):
            msg = f'Section "{section}" field "{field}" must be {_type}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    The configuration root defaults to the platform's writable app data location, as
    reported by Qt. Passing ``root`` places every user file below that directory instead.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')

        if root:
            app_data_dir = pathlib.Path(root)
        else:
            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.client_secret_template: pathlib.Path = self.template_dir / 'client_secret.json.template'
        self.settings_template: pathlib.Path = self.template_dir / 'settings.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'

        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.session_path: pathlib.Path = self.auth_dir / 'session.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify templates exist and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If a required template is missing.
        """
        logging.debug(f'Verifying required templates in {self.template_dir}')
        for path in (self.template_dir, self.client_secret_template, self.settings_template):
            if not path.exists():
                msg: str = f'Missing template: {path}'
                logging.error(msg)
                raise FileNotFoundError(msg)

        for path in (self.config_dir, self.auth_dir):
            if not path.exists():
                logging.debug(f'Creating directory: {path}')
                path.mkdir(parents=True, exist_ok=True)

        if not self.client_secret_path.exists():
            logging.debug(f'Copying default client_secret from template to {self.client_secret_path}')
            shutil.copy(self.client_secret_template, self.client_secret_path)
        if not self.settings_path.exists():
            logging.debug(f'Copying default settings from template to {self.settings_path}')
            shutil.copy(self.settings_template, self.settings_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save settings.json sections and client_secret.json.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, root: Optional[str] = None) -> None:
        super().__init__(root=root)

        self._signals_blocked: bool = False

        self.settings_data: Dict[str, Any] = {k: {} for k in SETTINGS_SCHEMA}
        self.client_secret_data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a metadata value using dictionary-style access.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')
        return self.settings_data['metadata'].get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a metadata value using dictionary-style access and persist it.

        Values are converted to the schema type where possible.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
            ValueError: If the value cannot be converted to the schema type.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')

        _type = SETTINGS_SCHEMA['metadata']['item_schema'][key]['type']
        if not isinstance(value, _type):
            logging.warning(f'Metadata key "{key}" is not of type {_type}, got {type(value)}.')
            try:
                value = _type(value)
            except ValueError:
                logging.error(f'Cannot convert "{value}" to {_type}.')
                raise

        self.settings_data['metadata'][key] = value
        self.save_section('metadata')

        if self._signals_blocked:
            return

        from ..core.signals import signals
        signals.metadataChanged.emit(key, value)

    def block_signals(self, v: bool) -> None:
        """Enable or disable emission of configuration change signals."""
        self._signals_blocked = v

    def init_data(self) -> None:
        """Reload settings and client_secret data."""
        self.load_settings()
        self.load_client_secret()

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk and validate against schema.

        Returns:
            The loaded settings dictionary.

        Raises:
            status.ConfigNotFoundException: If settings.json file is missing.
            status.ConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading settings from "{self.settings_path}"')
        if not self.settings_path.exists():
            raise status.ConfigNotFoundException

        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_settings_data(data)
        except (ValueError, TypeError) as ex:
            raise status.ConfigInvalidException(str(ex)) from ex

        self.settings_data = data
        return self.settings_data

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk and validate required OAuth fields.

        Returns:
            The loaded client secret data dictionary.

        Raises:
            status.ClientSecretNotFoundException: If client_secret.json file is missing.
            status.ClientSecretInvalidException: If JSON parsing or required fields are missing.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            raise status.ClientSecretNotFoundException

        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
        except (ValueError, json.JSONDecodeError) as ex:
            raise status.ClientSecretInvalidException from ex

        self.validate_client_secret(data)
        self.client_secret_data = data
        return self.client_secret_data

    def validate_client_secret(self, data=None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Args:
            data (dict, optional): Client secret data to validate. Defaults to loaded client_secret_data.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        missing: List[str] = [k for k in self.required_client_secret_keys if k not in data[key]]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def validate_settings_data(self, data: Dict[str, Any] = None) -> None:
        """Validate settings data against SETTINGS_SCHEMA.

        Args:
            data (dict, optional): Settings data to validate. Defaults to self.settings_data.

        Raises:
            ValueError: If a required section or field is missing.
            TypeError: If a section or field has the wrong type.
        """
        if data is None:
            data = self.settings_data
        if not data:
            raise ValueError('Settings data is empty.')

        logging.debug('Validating settings data against schema.')
        for section, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and section not in data:
                raise ValueError(f'Missing required section: {section}')
            if not isinstance(data[section], specs['type']):
                raise TypeError(f'Section "{section}" must be {specs["type"]}, got {type(data[section])}.')
            _validate_items(section, data[section], specs['item_schema'])

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a settings or client_secret section.

        Raises:
            KeyError: If section_name is unknown.
        """
        if section_name == 'client_secret':
            return self.client_secret_data.copy()
        return self.settings_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        The previous data is restored when the new data fails validation.

        Raises:
            ValueError: If section_name is unknown or the data is invalid.
            TypeError: If the data has the wrong types.
        """
        from ..core.signals import signals

        if section_name == 'client_secret':
            logging.debug('Setting entire client_secret data.')
            self.validate_client_secret(new_data)
            self.client_secret_data = new_data
            self.save_section('client_secret')
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in self.settings_data:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.settings_data[section_name].copy()
        self.settings_data[section_name] = new_data
        try:
            self.validate_settings_data()
        except (ValueError, TypeError) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.settings_data[section_name] = current_section_data
            raise

        self.save_section(section_name)
        if not self._signals_blocked:
            signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save.

        Raises:
            ValueError: If section_name is unknown.
        """
        from ..core.signals import signals

        if section_name == 'client_secret':
            logging.debug('Reverting client_secret to template.')
            shutil.copy(self.client_secret_template, self.client_secret_path)
            self.load_client_secret()
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in self.settings_data:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        self.settings_data[section_name] = template_data[section_name]
        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to its corresponding file.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name == 'client_secret':
            logging.debug(f'Saving client_secret to "{self.client_secret_path}"')
            self.validate_client_secret(self.client_secret_data)
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)
            return

        if section_name not in self.settings_data:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.settings_data[section_name]

        with self.settings_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)


settings: SettingsAPI = SettingsAPI()
