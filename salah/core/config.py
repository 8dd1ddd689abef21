import yaml
from pathlib import Path
import os
from typing import Any, Dict, Optional, List, Callable
import logging
import threading
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileModifiedEvent
import time
import re
import copy

from salah.notifications.models import NotificationSettings
from salah.prayer.models import Location

DEFAULT_CONFIG_DIR = Path.home() / ".salah"
# KEY=VALUE; blank lines and # comments never match
_ENV_LINE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")
_ENV_REF = re.compile(r"^(?:\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*))$")


def default_config(config_dir: Path) -> Dict[str, Any]:
    return {
        "location": {
            "latitude": 41.0082,
            "longitude": 28.9784,
            "timezone": None,  # e.g. "Europe/Istanbul"; None = system local time
        },
        "prayer_times": {
            "backend": "aladhan",
            "method": 2,
            "timeout": 10,
            "cache_hours": 24,
            "fallback_times": {
                "fajr": "05:30",
                "sunrise": "06:50",
                "dhuhr": "12:30",
                "asr": "16:00",
                "maghrib": "19:00",
                "isha": "20:30",
            },
        },
        "notifications": {
            "enabled": True,
            "minutes_before": 15,
            "reminder_interval": 30,
            "reminder_window_minutes": 60,
        },
        "refresh": {
            "schedule_time": "00:05",
        },
        "database": {
            "path": str(config_dir / "salah.db"),
        },
        "api": {
            "enabled": False,
            "host": "127.0.0.1",
            "port": 8765,
        },
        "logging": {
            "level": "INFO",
            "file": str(config_dir / "salah.log"),
        },
    }


class ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, config):
        self.config = config
        self.last_modified = 0
        self.cooldown = 1.0  # Cooldown period in seconds

    def on_modified(self, event):
        if not isinstance(event, FileModifiedEvent):
            return

        current_time = time.time()
        if current_time - self.last_modified < self.cooldown:
            return

        if Path(event.src_path).resolve() == self.config.config_file:
            try:
                self.last_modified = current_time
                self.config.reload()
            except Exception as e:
                logging.error(f"Error handling config change: {e}")


class Config:
    def __init__(self, config_path: Optional[str] = None, watch: bool = True):
        logging.debug("Initializing Config class")

        self.change_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._reload_lock = threading.Lock()
        self.observer = None

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = DEFAULT_CONFIG_DIR
            self.config_file = self.config_dir / "config.yaml"

        logging.debug(f"Using config file: {self.config_file}")

        # Load environment variables from .env file
        self._load_env_file()

        self._ensure_config_exists()
        self._load_config()

        if watch:
            # Setup file watching
            self.observer = Observer()
            handler = ConfigChangeHandler(self)
            logging.info(f"Path monitored for reloading: {self.config_dir}")
            self.observer.schedule(handler, str(self.config_dir), recursive=False)
            self.observer.start()

    def register_change_callback(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback to be called when config changes"""
        self.change_callbacks.append(callback)

    def reload(self) -> None:
        """Reload config and notify listeners"""
        if not self._reload_lock.acquire(blocking=False):
            return
        try:
            logging.info("Config file change detected - reloading configuration")

            # Wait briefly for file to be fully written
            time.sleep(0.1)

            old_config = copy.deepcopy(self.data) if hasattr(self, 'data') else {}
            self._load_config()

            # Log changes
            self._log_config_changes(old_config, self.data)

            for callback in self.change_callbacks:
                try:
                    callback(self.data)
                except Exception as e:
                    logging.error(f"Error in config change callback: {e}", exc_info=True)

        except Exception as e:
            logging.error(f"Error reloading config: {e}")
            logging.exception(e)
        finally:
            self._reload_lock.release()

    def _log_config_changes(self, old_config: Dict, new_config: Dict) -> None:
        """Log the differences between old and new configs"""
        def compare_dict(path: str, dict1: Dict, dict2: Dict) -> None:
            all_keys = set(dict1.keys()) | set(dict2.keys())
            for key in all_keys:
                current_path = f"{path}.{key}" if path else key

                # Key exists in both configs
                if key in dict1 and key in dict2:
                    if isinstance(dict1[key], dict) and isinstance(dict2[key], dict):
                        compare_dict(current_path, dict1[key], dict2[key])
                    elif dict1[key] != dict2[key]:
                        logging.info(f"Config changed: {current_path}: {dict1[key]} -> {dict2[key]}")

                # Key only in old config
                elif key in dict1:
                    logging.info(f"Config removed: {current_path}: {dict1[key]}")

                # Key only in new config
                else:
                    logging.info(f"Config added: {current_path}: {dict2[key]}")

        logging.info("=== Configuration Changes Detected ===")
        compare_dict("", old_config, new_config)
        logging.info("=== End of Configuration Changes ===")

    def cleanup(self) -> None:
        """Stop the file observer"""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()

    def _ensure_config_exists(self) -> None:
        """Create default config if it doesn't exist"""
        if not self.config_dir.exists():
            logging.info(f"Creating config directory: {self.config_dir}")
            self.config_dir.mkdir(parents=True)

        if not self.config_file.exists():
            logging.info(f"Creating default config file: {self.config_file}")
            self.config_file.write_text(yaml.safe_dump(default_config(self.config_dir), sort_keys=False))

    def _load_env_file(self) -> None:
        """Export KEY=VALUE lines from .env beside the config (or in the cwd) without overriding the environment.

        Lets private values such as home coordinates stay out of config.yaml: `latitude: ${SALAH_LATITUDE}`.
        """
        env_file = next((p for p in (self.config_dir / ".env", Path.cwd() / ".env") if p.is_file()), None)
        if env_file is None:
            logging.debug("No .env file found")
            return

        try:
            lines = env_file.read_text().splitlines()
        except OSError as e:
            logging.warning(f"Could not read {env_file}: {e}")
            return

        loaded = 0
        for line in lines:
            match = _ENV_LINE.match(line.strip())
            if not match:
                continue
            key, value = match.group(1), match.group(2).strip("\"'")
            if key not in os.environ:
                os.environ[key] = value
                loaded += 1
        logging.info(f"Loaded {loaded} environment variables from {env_file}")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Replace whole-value ${VAR} or $VAR strings with the environment value; unset names stay as written."""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        if isinstance(data, str):
            match = _ENV_REF.match(data)
            if match:
                return os.environ.get(match.group(1) or match.group(2), data)
        return data

    def _merge_defaults(self, defaults: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        """Sections missing from the file fall back to defaults, one level deep."""
        merged = copy.deepcopy(defaults)
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
        return merged

    def _load_config(self) -> None:
        """Load configuration from file"""
        try:
            logging.debug(f"Loading config from: {self.config_file}")
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f) or {}

            if not isinstance(new_data, dict):
                raise ValueError("Invalid config format: root must be a dictionary")

            # Substitute environment variables
            new_data = self._substitute_env_vars(new_data)

            self.data = self._merge_defaults(default_config(self.config_dir), new_data)
            logging.debug(f"Loaded config data: {self.data}")

            # Expand ~ in file paths
            for section in ("logging", "database"):
                for key in ("file", "path"):
                    value = self.data.get(section, {}).get(key)
                    if isinstance(value, str):
                        self.data[section][key] = os.path.expanduser(value)

        except (OSError, yaml.YAMLError, ValueError) as e:
            logging.error(f"Error loading config: {e}")
            if hasattr(self, 'data'):
                logging.info("Keeping previous configuration")
            else:
                logging.info("Using default configuration")
                self.data = default_config(self.config_dir)

    def get_section(self, name: str) -> Dict[str, Any]:
        return dict(self.data.get(name) or {})

    def get_location(self) -> Location:
        return Location.from_config(self.get_section("location"))

    def get_timezone_name(self) -> Optional[str]:
        return self.get_section("location").get("timezone") or None

    def get_notification_settings(self) -> NotificationSettings:
        """Snapshot of the notifications section for one scheduling pass"""
        return NotificationSettings.from_config(self.get_section("notifications"))

    def save_section(self, name: str, section: Dict[str, Any]) -> None:
        """Save configuration for one section"""
        self.data[name] = section

        with open(self.config_file, "w") as f:
            yaml.safe_dump(self.data, f, sort_keys=False)
