import subprocess
from importlib.metadata import PackageNotFoundError, version

DISTRIBUTION_NAME = "gainly-avatars"


def get_git_version():
    try:
        return subprocess.check_output(
            ["git", "describe", "--tags", "--always"], stderr=subprocess.DEVNULL
        ).strip().decode("utf-8")
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def get_app_version() -> str:
    """Версия из метаданных пакета, для неустановленного кода из git."""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return get_git_version()


APP_VERSION = get_app_version()
