"""Shared constants: storage keys, default configs and network settings."""

# Keys inside the local persistent store
STORAGE_KEYS = {
    'GAS_CONFIG': 'gasConfig',
    'GDRIVE_CONFIG': 'gdriveConfig',
}

# Ledger keys look like yousei:<storeId>:<YYYY-MM-DD>
DATA_PREFIX = 'yousei:'
KEY_SEPARATOR = ':'

DEFAULT_STORE_ID = 'KRB01'
DEFAULT_FOLDER_NAME = 'yousei-notebook-data'

DEFAULT_CONFIGS = {
    'GAS': {
        'web_app_url': '',
        'store_id': DEFAULT_STORE_ID,
        'enabled': False,
        'auto_sync': True,
        'sync_interval': 300000,  # 5 minutes, in ms
        'last_sync': None,
    },
    'GDRIVE': {
        'client_id': '',
        'api_key': '',
        'client_secret': '',
        'folder_id': '',
        'enabled': False,
        'folder_name': DEFAULT_FOLDER_NAME,
    },
}

NETWORK_SETTINGS = {
    'DEFAULT_TIMEOUT': 10000,  # ms
    'MAX_RETRY_COUNT': 3,
    'RETRY_DELAY': 1000,  # ms
    'MAX_RETRY_DELAY': 5000,  # ms
}

STORAGE_TYPES = {
    'LOCAL': 'localStorage',
    'GAS': 'gasStorage',
    'GDRIVE': 'gdriveStorage',
}

STATUS = {
    'SUCCESS': 'success',
    'ERROR': 'error',
    'NOT_FOUND': 'not_found',
}

SERVICE_VERSION = '1.0.0'
SHEET_HEADER = ['key', 'value', 'timestamp', 'lastModified']
