import importlib
import pkgutil
import sys
from pathlib import Path

from core.logger import Logger
logger = Logger(__name__)


def load_from_directory(base_path: str = "modules", submodules=None):
    """
    Import every feature package under base_path and its known submodules
    (service, api, cron) so their registrations run.
    """
    submodules = submodules or ("service", "api", "cron")

    base_dir = (Path(__file__).resolve().parent.parent / base_path)
    logger.info(f"Scanning base path: {base_dir}")

    if str(base_dir.parent) not in sys.path:
        sys.path.insert(0, str(base_dir.parent))

    if not base_dir.exists():
        logger.warning(f"Directory not found: {base_dir}")
        return

    for module_info in pkgutil.iter_modules([str(base_dir)]):
        if not module_info.ispkg:
            continue
        name = f"{base_path}.{module_info.name}"
        for sub in submodules:
            submodule_path = f"{name}.{sub}"
            try:
                importlib.import_module(submodule_path)
                logger.info(f"Loaded submodule: {submodule_path}")
            except ModuleNotFoundError as e:
                if e.name != submodule_path:
                    logger.error(f"Failed to load {submodule_path}: {e}")
                continue
            except Exception as e:
                logger.error(f"Failed to load {submodule_path}: {e}")

def auto_load_all():
    load_from_directory("modules")

def dynamic_import(module_path: str, class_name: str):
    """
    Dynamically import and return a class from a module path.
    e.g., module_path='modules.churn.cron', class_name='RegenerateChurnCacheJob'
    """
    try:
        module = importlib.import_module(module_path)
        cls = getattr(module, class_name)
        return cls
    except (ImportError, AttributeError) as e:
        raise ImportError(f"Failed to import {class_name} from {module_path}: {e}")
