from pathlib import Path
from typing import Dict

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# application modules that hold logic rather than Tortoise models
NON_MODEL_FILES = {
    "signals.py",
    "schemas.py",
    "services.py",
    "base.py",
    "scoring.py",
    "gateway.py",
    "settlement.py",
    "compensation.py",
}


def get_module(base_dir="routes"):
    base_path = PROJECT_ROOT / base_dir
    module = [
        p.name
        for p in base_path.iterdir()
        if p.is_dir() and not p.name.startswith("__") and not p.name.startswith(".")
    ]
    return module


def get_model_modules(base_dir: str = "applications") -> list[str]:
    base_path = PROJECT_ROOT / base_dir
    model_files = []

    for app_dir in sorted(base_path.iterdir()):
        if not app_dir.is_dir() or app_dir.name.startswith("__"):
            continue

        model_files.extend(
            f"{base_dir}.{app_dir.name}.{file.stem}"
            for file in sorted(app_dir.glob("*.py"))
            if file.is_file() and not file.name.startswith("__") and file.name not in NON_MODEL_FILES
        )
    return model_files


def get_single_app_structure(base_dir: str = "applications", include_aerich: bool = True) -> Dict[str, dict]:
    all_model_files = get_model_modules(base_dir)
    if include_aerich:
        all_model_files.append("aerich.models")
    return {
        "models": {
            "models": all_model_files,
            "default_connection": "default",
        }
    }
