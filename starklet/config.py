import os
import json
import logging
from dotenv import load_dotenv


class AppConfig:
    def __init__(self, env_file=".env"):
        load_dotenv(env_file)

        self.LOG_LEVEL = self._parse_log_level()
        self.DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///sessions.db")
        self.APP_PORT = int(os.environ.get("APP_PORT", 8080))
        self.APP_URL = os.environ.get("APP_URL", "http://localhost:3000").rstrip("/")
        self.API_URL = os.environ.get("API_URL", self.APP_URL).rstrip("/")
        self.STARKNET_NODE_URL = os.environ.get("STARKNET_NODE_URL", "http://localhost:5050")

        self.STARKLET_FACTORY_ADDRESS = os.environ.get("STARKLET_FACTORY_ADDRESS") or None
        self.STARKLET_CLASS_HASH = os.environ.get("STARKLET_CLASS_HASH") or None
        self.STARKLET_SALT = os.environ.get("STARKLET_SALT", "0")

        self._load_polling_config()

        self.CREDENTIALS_FILE = os.environ.get("CREDENTIALS_FILE", "starklet.json")
        self.CREDENTIALS_ENV_FILE = os.environ.get("CREDENTIALS_ENV_FILE", ".env")


    @staticmethod
    def _get_env_or_raise(key):
        value = os.environ.get(key)
        if not value or not value.strip():
            raise KeyError(f"❌ CONFIG_ERROR: Variável de ambiente '{key}' é obrigatória no .env")
        return value


    @staticmethod
    def _load_strict_json(path, context_name):
        if not os.path.exists(path):
            raise FileNotFoundError(f"❌ CONFIG_ERROR: Arquivo '{context_name}' não encontrado em: {path}")
        try:
            with open(path, 'r') as f:
                data = json.load(f)
                if not data:
                    raise ValueError(f"❌ CONFIG_ERROR: Arquivo '{path}' está vazio.")
                return data
        except json.JSONDecodeError as e:
            raise ValueError(f"❌ CONFIG_ERROR: JSON inválido em '{path}': {e}")


    @staticmethod
    def _validate_keys(data, required_keys, source_name):
        for key in required_keys:
            if key not in data or data[key] is None:
                raise KeyError(f"❌ CONFIG_ERROR: Chave '{key}' ausente no arquivo '{source_name}'")


    def _parse_log_level(self):
        raw_level = os.environ.get("LOG_LEVEL", "INFO").upper()
        level_map = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL
        }
        if raw_level not in level_map:
            raise ValueError(f"❌ CONFIG_ERROR: LOG_LEVEL '{raw_level}' inválido no .env. "
                             f"Use: DEBUG, INFO, WARNING, ERROR ou CRITICAL.")
        return level_map[raw_level]


    def _load_polling_config(self):
        try:
            self.POLL_INTERVAL_SECONDS = float(os.environ.get("POLL_INTERVAL_SECONDS", 2))
            self.POLL_MAX_ATTEMPTS = int(os.environ.get("POLL_MAX_ATTEMPTS", 60))
        except ValueError as e:
            raise ValueError(f"❌ CONFIG_ERROR: Configuração de polling inválida no .env: {e}")

        if self.POLL_INTERVAL_SECONDS < 0 or self.POLL_MAX_ATTEMPTS < 1:
            raise ValueError("❌ CONFIG_ERROR: POLL_INTERVAL_SECONDS deve ser >= 0 e POLL_MAX_ATTEMPTS >= 1.")


    def require(self, key):
        """Return a setting that is only mandatory for some flows (e.g. address derivation)."""
        value = getattr(self, key, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            return self._get_env_or_raise(key)
        return value


    def load_credentials(self, path):
        data = self._load_strict_json(path, "Credenciais Starklet")
        self._validate_keys(data, ["session_id", "session_token"], path)
        return data

config = AppConfig()
